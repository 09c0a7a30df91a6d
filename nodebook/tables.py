"""
SQLAlchemy table definitions.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class UserRow(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    nickname = Column(String(100), nullable=False, unique=True)
    auth0_id = Column(String(200), nullable=False, unique=True)

    flashcard_sets = relationship(
        "FlashcardSetRow", back_populates="user", cascade="all, delete-orphan"
    )


class FlashcardSetRow(TimestampMixin, Base):
    __tablename__ = "flashcard_sets"

    id = Column(Integer, primary_key=True)
    title = Column(String(100), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    public_id = Column(String(100), nullable=True, unique=True)
    is_public = Column(Boolean, nullable=False, default=False)
    last_studied = Column(DateTime(timezone=True), nullable=True)

    user = relationship("UserRow", back_populates="flashcard_sets")
    flashcards = relationship(
        "FlashcardRow",
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        order_by="FlashcardRow.id",
    )
    mind_maps = relationship(
        "MindMapRow",
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        order_by="MindMapRow.id",
    )
    block_scores = relationship(
        "BlocksScoreRow", back_populates="flashcard_set", cascade="all, delete-orphan"
    )


class FlashcardRow(TimestampMixin, Base):
    __tablename__ = "flashcards"

    id = Column(Integer, primary_key=True)
    term = Column(String(200), nullable=False)
    solution = Column(String(1000), nullable=False)
    concept = Column(String(100), nullable=False, default="")
    set_id = Column(
        Integer, ForeignKey("flashcard_sets.id"), nullable=False, index=True
    )
    public_id = Column(String(100), nullable=True, unique=True)

    # Optional tracking fields
    difficulty = Column(Integer, nullable=False, default=0)
    times_reviewed = Column(Integer, nullable=False, default=0)
    last_reviewed = Column(DateTime(timezone=True), nullable=True)
    mastered = Column(Boolean, nullable=False, default=False)

    flashcard_set = relationship("FlashcardSetRow", back_populates="flashcards")


class MindMapRow(TimestampMixin, Base):
    __tablename__ = "mind_maps"

    id = Column(Integer, primary_key=True)
    title = Column(String(100), nullable=False)
    set_id = Column(
        Integer, ForeignKey("flashcard_sets.id"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_public = Column(Boolean, nullable=False, default=False)
    public_id = Column(String(100), nullable=True, unique=True)

    flashcard_set = relationship("FlashcardSetRow", back_populates="mind_maps")
    connections = relationship(
        "MindMapConnectionRow",
        back_populates="mind_map",
        cascade="all, delete-orphan",
        order_by="MindMapConnectionRow.id",
    )
    node_layouts = relationship(
        "MindMapNodeLayoutRow",
        back_populates="mind_map",
        cascade="all, delete-orphan",
        order_by="MindMapNodeLayoutRow.id",
    )


class MindMapConnectionRow(TimestampMixin, Base):
    __tablename__ = "mind_map_connections"

    id = Column(Integer, primary_key=True)
    mind_map_id = Column(
        Integer, ForeignKey("mind_maps.id"), nullable=False, index=True
    )
    source_id = Column(Integer, ForeignKey("flashcards.id"), nullable=False)
    target_id = Column(Integer, ForeignKey("flashcards.id"), nullable=False)
    relationship_label = Column("relationship", String(200), nullable=False, default="")

    mind_map = relationship("MindMapRow", back_populates="connections")


class MindMapNodeLayoutRow(TimestampMixin, Base):
    __tablename__ = "mind_map_node_layouts"

    id = Column(Integer, primary_key=True)
    mind_map_id = Column(
        Integer, ForeignKey("mind_maps.id"), nullable=False, index=True
    )
    flashcard_id = Column(Integer, ForeignKey("flashcards.id"), nullable=False)
    x_position = Column(Float, nullable=False)
    y_position = Column(Float, nullable=False)
    data = Column(String(200), nullable=False, default="")

    mind_map = relationship("MindMapRow", back_populates="node_layouts")


class BlocksScoreRow(Base):
    __tablename__ = "blocks_scores"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    flashcard_set_id = Column(
        Integer, ForeignKey("flashcard_sets.id"), nullable=False, index=True
    )
    time_seconds = Column(Integer, nullable=False)
    correct_attempts = Column(Integer, nullable=False)
    total_attempts = Column(Integer, nullable=False)
    played_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("UserRow")
    flashcard_set = relationship("FlashcardSetRow", back_populates="block_scores")
