"""
Pydantic schemas for the Nodebook API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RecordModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserResponse(RecordModel):
    id: int
    nickname: str
    created_at: Optional[datetime] = None


class FlashcardPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    term: str = Field(..., max_length=200)
    solution: str = Field(..., max_length=1000)
    concept: str = Field(default="", max_length=100)


class UpdateFlashcardRequest(BaseModel):
    term: Optional[str] = Field(default=None, max_length=200)
    solution: Optional[str] = Field(default=None, max_length=1000)
    concept: Optional[str] = Field(default=None, max_length=100)


class FlashcardChangePayload(BaseModel):
    id: int = 0
    term: str = Field(default="", max_length=200)
    solution: str = Field(default="", max_length=1000)
    concept: str = Field(default="", max_length=100)
    should_create: bool = False
    should_update: bool = False
    should_delete: bool = False


class FlashcardResponse(RecordModel):
    id: int
    public_id: Optional[str]
    set_id: int
    term: str
    solution: str
    concept: str
    difficulty: int = 0
    times_reviewed: int = 0
    last_reviewed: Optional[datetime] = None
    mastered: bool = False


class CreateSetRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    is_public: bool = False
    flashcards: list[FlashcardPayload] = Field(default_factory=list)


class UpdateSetRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_public: Optional[bool] = None
    flashcards: Optional[list[FlashcardChangePayload]] = None


class FlashcardSetResponse(RecordModel):
    id: int
    public_id: Optional[str]
    title: str
    user_id: int
    owner_nickname: str
    is_public: bool
    last_studied: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    flashcards: list[FlashcardResponse] = Field(default_factory=list)
    is_owner: bool = False


class ConnectionPayload(BaseModel):
    source_id: int
    target_id: int
    relationship: str = Field(default="", max_length=200)


class NodeLayoutPayload(BaseModel):
    flashcard_id: int
    x_position: float
    y_position: float
    data: str = Field(default="", max_length=200)


class ConnectionResponse(RecordModel):
    id: int
    mind_map_id: int
    source_id: int
    target_id: int
    relationship: str


class NodeLayoutResponse(RecordModel):
    id: int
    mind_map_id: int
    flashcard_id: int
    x_position: float
    y_position: float
    data: str


class CreateMindMapRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    is_public: bool = False
    connections: Optional[list[ConnectionPayload]] = None
    node_layouts: Optional[list[NodeLayoutPayload]] = None


class UpdateMindMapRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_public: Optional[bool] = None
    connections: Optional[list[ConnectionPayload]] = None
    node_layouts: Optional[list[NodeLayoutPayload]] = None


class MindMapResponse(RecordModel):
    id: int
    public_id: Optional[str]
    title: str
    set_id: int
    user_id: int
    is_public: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    connections: list[ConnectionResponse] = Field(default_factory=list)
    node_layouts: list[NodeLayoutResponse] = Field(default_factory=list)


class CheckTitleRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)


class CheckTitleResponse(BaseModel):
    available: bool


class BlockScoreRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    correct_attempts: int = Field(..., ge=0)
    total_attempts: int = Field(..., ge=0)
    time: int = Field(..., ge=0, description="Seconds taken to finish the round")


class BlockScoreResponse(RecordModel):
    id: int
    user_id: int
    nickname: str
    flashcard_set_id: int
    time_seconds: int
    correct_attempts: int
    total_attempts: int
    played_at: Optional[datetime] = None
