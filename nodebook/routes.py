"""
HTTP routes for the Nodebook API.

Sets, flashcards and mind maps are addressed by their public ids. Reads are
allowed when the set (or mind map) is public or the caller owns it; writes
require ownership.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from nodebook.auth import Principal
from nodebook.db import (
    DbClient,
    FlashcardChange,
    FlashcardSetRecord,
    NewConnection,
    NewFlashcard,
    NewNodeLayout,
    UserRecord,
)
from nodebook.dependencies import (
    get_current_user,
    get_db_client,
    get_optional_principal,
    require_principal,
)
from nodebook.schemas import (
    BlockScoreRequest,
    BlockScoreResponse,
    CheckTitleRequest,
    CheckTitleResponse,
    ConnectionPayload,
    CreateMindMapRequest,
    CreateSetRequest,
    FlashcardPayload,
    FlashcardResponse,
    FlashcardSetResponse,
    MindMapResponse,
    NodeLayoutPayload,
    UpdateFlashcardRequest,
    UpdateMindMapRequest,
    UpdateSetRequest,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _is_owner(flashcard_set: FlashcardSetRecord, principal: Optional[Principal]) -> bool:
    return principal is not None and principal.subject == flashcard_set.owner_auth0_id


def _load_set(db: DbClient, set_id: str) -> FlashcardSetRecord:
    flashcard_set = db.get_set(set_id)
    if flashcard_set is None:
        logger.info("Set not found for public_id=%s", set_id)
        raise HTTPException(status_code=404, detail=f"Set with ID {set_id} not found")
    return flashcard_set


def _load_visible_set(
    db: DbClient, set_id: str, principal: Optional[Principal]
) -> FlashcardSetRecord:
    flashcard_set = _load_set(db, set_id)
    if not flashcard_set.is_public and not _is_owner(flashcard_set, principal):
        logger.info(
            "Forbidden read of set %s by %s",
            set_id,
            principal.subject if principal else "anonymous",
        )
        raise HTTPException(status_code=403, detail="Forbidden")
    return flashcard_set


def _load_owned_set(db: DbClient, set_id: str, principal: Principal) -> FlashcardSetRecord:
    flashcard_set = _load_set(db, set_id)
    if not _is_owner(flashcard_set, principal):
        logger.info("Forbidden write to set %s by %s", set_id, principal.subject)
        raise HTTPException(status_code=403, detail="Forbidden")
    return flashcard_set


def _set_response(
    flashcard_set: FlashcardSetRecord, principal: Optional[Principal]
) -> FlashcardSetResponse:
    return FlashcardSetResponse(
        **asdict(flashcard_set), is_owner=_is_owner(flashcard_set, principal)
    )


def _load_user(db: DbClient, nickname: str) -> UserRecord:
    user = db.get_user_by_nickname(nickname)
    if user is None:
        raise HTTPException(
            status_code=404, detail=f"User not found for nickname={nickname}"
        )
    return user


def _connections(payload: list[ConnectionPayload] | None) -> list[NewConnection] | None:
    if payload is None:
        return None
    return [
        NewConnection(
            source_id=item.source_id,
            target_id=item.target_id,
            relationship=item.relationship,
        )
        for item in payload
    ]


def _layouts(payload: list[NodeLayoutPayload] | None) -> list[NewNodeLayout] | None:
    if payload is None:
        return None
    return [
        NewNodeLayout(
            flashcard_id=item.flashcard_id,
            x_position=item.x_position,
            y_position=item.y_position,
            data=item.data,
        )
        for item in payload
    ]


# Users


@router.get("/users/me", response_model=UserResponse)
def get_me(user: UserRecord = Depends(get_current_user)):
    return UserResponse.model_validate(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    return [UserResponse.model_validate(user) for user in db.list_users()]


@router.get("/users/{nickname}/sets", response_model=list[FlashcardSetResponse])
def list_user_sets(
    nickname: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    user = _load_user(db, nickname)
    include_private = principal is not None and principal.subject == user.auth0_id
    sets = db.list_sets_for_user(user.id, include_private=include_private)
    return [_set_response(flashcard_set, principal) for flashcard_set in sets]


@router.get("/users/{nickname}/mindmaps", response_model=list[MindMapResponse])
def list_user_mind_maps(
    nickname: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    user = _load_user(db, nickname)
    include_private = principal is not None and principal.subject == user.auth0_id
    mind_maps = db.list_mind_maps_for_user(user.id, include_private=include_private)
    return [MindMapResponse.model_validate(mind_map) for mind_map in mind_maps]


# Flashcard sets


@router.post("/sets", response_model=FlashcardSetResponse, status_code=201)
def create_set(
    payload: CreateSetRequest,
    user: UserRecord = Depends(get_current_user),
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = db.create_set(
        user.id,
        payload.title,
        payload.is_public,
        [
            NewFlashcard(term=card.term, solution=card.solution, concept=card.concept)
            for card in payload.flashcards
        ],
    )
    return _set_response(flashcard_set, principal)


@router.get("/sets/{set_id}", response_model=FlashcardSetResponse)
def get_set(
    set_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_visible_set(db, set_id, principal)
    return _set_response(flashcard_set, principal)


@router.put("/sets/{set_id}", response_model=FlashcardSetResponse)
def update_set(
    set_id: str,
    payload: UpdateSetRequest,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    changes = None
    if payload.flashcards is not None:
        changes = [FlashcardChange(**item.model_dump()) for item in payload.flashcards]
    updated = db.update_set(
        flashcard_set.id,
        title=payload.title,
        is_public=payload.is_public,
        changes=changes,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Set with ID {set_id} not found")
    return _set_response(updated, principal)


@router.delete("/sets/{set_id}", status_code=204)
def delete_set(
    set_id: str,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    if not db.delete_set(flashcard_set.id):
        raise HTTPException(status_code=404, detail=f"Set not found for public_id={set_id}")
    return Response(status_code=204)


# Flashcards


@router.get("/sets/{set_id}/flashcards", response_model=list[FlashcardResponse])
def list_flashcards(
    set_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_visible_set(db, set_id, principal)
    return [
        FlashcardResponse.model_validate(card)
        for card in db.list_flashcards(flashcard_set.id)
    ]


@router.post(
    "/sets/{set_id}/flashcards", response_model=FlashcardResponse, status_code=201
)
def create_flashcard(
    set_id: str,
    payload: FlashcardPayload,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    card = db.create_flashcard(
        flashcard_set.id,
        NewFlashcard(
            term=payload.term, solution=payload.solution, concept=payload.concept
        ),
    )
    return FlashcardResponse.model_validate(card)


@router.get("/flashcards/{flashcard_id}", response_model=FlashcardResponse)
def get_flashcard(
    flashcard_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    card = db.get_flashcard(flashcard_id)
    if card is None:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    flashcard_set = db.get_set_by_id(card.set_id)
    if flashcard_set is None or not (
        flashcard_set.is_public or _is_owner(flashcard_set, principal)
    ):
        raise HTTPException(status_code=403, detail="Forbidden")
    return FlashcardResponse.model_validate(card)


@router.put(
    "/sets/{set_id}/flashcards/{flashcard_id}", response_model=FlashcardResponse
)
def update_flashcard(
    set_id: str,
    flashcard_id: str,
    payload: UpdateFlashcardRequest,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    card = db.update_flashcard(
        flashcard_set.id,
        flashcard_id,
        term=payload.term,
        solution=payload.solution,
        concept=payload.concept,
    )
    if card is None:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return FlashcardResponse.model_validate(card)


@router.delete("/sets/{set_id}/flashcards/{flashcard_id}", status_code=204)
def delete_flashcard(
    set_id: str,
    flashcard_id: str,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    if not db.delete_flashcard(flashcard_set.id, flashcard_id):
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return Response(status_code=204)


# Mind maps


@router.get("/sets/{set_id}/mindmaps", response_model=list[MindMapResponse])
def list_set_mind_maps(
    set_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_set(db, set_id)
    mind_maps = db.list_mind_maps_for_set(
        flashcard_set.id, include_private=_is_owner(flashcard_set, principal)
    )
    return [MindMapResponse.model_validate(mind_map) for mind_map in mind_maps]


@router.get("/sets/{set_id}/mindmaps/{mind_map_id}", response_model=MindMapResponse)
def get_mind_map(
    set_id: str,
    mind_map_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_set(db, set_id)
    mind_map = db.get_mind_map(flashcard_set.id, mind_map_id)
    if mind_map is None:
        raise HTTPException(status_code=404, detail="MindMap not found in set")
    if not mind_map.is_public:
        if principal is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not _is_owner(flashcard_set, principal):
            raise HTTPException(status_code=403, detail="Forbidden")
    return MindMapResponse.model_validate(mind_map)


@router.post(
    "/sets/{set_id}/mindmaps", response_model=MindMapResponse, status_code=201
)
def create_mind_map(
    set_id: str,
    payload: CreateMindMapRequest,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    mind_map = db.save_mind_map(
        flashcard_set.id,
        flashcard_set.user_id,
        title=payload.title,
        is_public=payload.is_public,
        connections=_connections(payload.connections),
        node_layouts=_layouts(payload.node_layouts),
    )
    return MindMapResponse.model_validate(mind_map)


@router.post("/sets/{set_id}/mindmaps/check-title", response_model=CheckTitleResponse)
def check_mind_map_title(
    set_id: str,
    payload: CheckTitleRequest,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    if db.mind_map_title_exists(flashcard_set.id, flashcard_set.user_id, payload.title):
        raise HTTPException(
            status_code=409, detail="Mind Map with this title already exists"
        )
    return CheckTitleResponse(available=True)


@router.put("/sets/{set_id}/mindmaps/{mind_map_id}", response_model=MindMapResponse)
def update_mind_map(
    set_id: str,
    mind_map_id: str,
    payload: UpdateMindMapRequest,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    mind_map = db.save_mind_map(
        flashcard_set.id,
        flashcard_set.user_id,
        mind_map_id,
        title=payload.title,
        is_public=payload.is_public,
        connections=_connections(payload.connections),
        node_layouts=_layouts(payload.node_layouts),
    )
    if mind_map is None:
        raise HTTPException(status_code=404, detail="MindMap not found in set")
    return MindMapResponse.model_validate(mind_map)


@router.delete("/sets/{set_id}/mindmaps/{mind_map_id}", status_code=204)
def delete_mind_map(
    set_id: str,
    mind_map_id: str,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    if not db.delete_mind_map(flashcard_set.id, mind_map_id):
        raise HTTPException(status_code=404, detail="MindMap not found in set")
    return Response(status_code=204)


@router.put("/sets/{set_id}/mindmaps/{mind_map_id}/connections", status_code=204)
def replace_mind_map_connections(
    set_id: str,
    mind_map_id: str,
    payload: list[ConnectionPayload],
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    if db.replace_connections(flashcard_set.id, mind_map_id, _connections(payload)) is None:
        raise HTTPException(status_code=404, detail="MindMap not found in set")
    return Response(status_code=204)


@router.put("/sets/{set_id}/mindmaps/{mind_map_id}/layouts", status_code=204)
def replace_mind_map_layouts(
    set_id: str,
    mind_map_id: str,
    payload: list[NodeLayoutPayload],
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_owned_set(db, set_id, principal)
    if db.replace_layouts(flashcard_set.id, mind_map_id, _layouts(payload)) is None:
        raise HTTPException(status_code=404, detail="MindMap not found in set")
    return Response(status_code=204)


# Blocks leaderboard


@router.get(
    "/sets/{set_id}/blocks/leaderboard", response_model=list[BlockScoreResponse]
)
def get_blocks_leaderboard(
    set_id: str,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_visible_set(db, set_id, principal)
    return [
        BlockScoreResponse.model_validate(score)
        for score in db.list_block_scores(flashcard_set.id)
    ]


@router.post(
    "/sets/{set_id}/blocks/scores", response_model=BlockScoreResponse, status_code=201
)
def create_block_score(
    set_id: str,
    payload: BlockScoreRequest,
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
):
    flashcard_set = _load_visible_set(db, set_id, principal)
    user = db.get_user_by_auth0_id(principal.subject)
    if user is None:
        user = get_current_user(principal, db)
    score = db.create_block_score(
        user.id,
        flashcard_set.id,
        time_seconds=payload.time,
        correct_attempts=payload.correct_attempts,
        total_attempts=payload.total_attempts,
    )
    return BlockScoreResponse.model_validate(score)
