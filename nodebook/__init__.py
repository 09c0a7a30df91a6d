"""
Nodebook API package.

This package provides a FastAPI application for flashcard sets, flashcards,
mind maps over those flashcards and the blocks game leaderboard, backed by a
SQLAlchemy database and Auth0-issued bearer tokens.
"""
