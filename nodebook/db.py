"""
Database abstraction over SQLAlchemy.

Rows never leave this module: every method opens its own session and hands
back plain record dataclasses, so routes do not depend on session lifetime.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol

from sqlalchemy import create_engine, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from nodebook.tables import (
    Base,
    BlocksScoreRow,
    FlashcardRow,
    FlashcardSetRow,
    MindMapConnectionRow,
    MindMapNodeLayoutRow,
    MindMapRow,
    UserRow,
)

logger = logging.getLogger(__name__)


class InvalidPayloadError(ValueError):
    """Raised when a write is rejected because of the submitted data."""


class InvalidReferenceError(InvalidPayloadError):
    """Raised when a mind map child row points outside the mind map's set."""


class ConflictError(Exception):
    """Raised when a write would violate a uniqueness constraint."""


def new_public_id() -> str:
    return uuid.uuid4().hex


@dataclass
class UserRecord:
    id: int
    nickname: str
    auth0_id: str
    created_at: Optional[datetime] = None


@dataclass
class FlashcardRecord:
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


@dataclass
class FlashcardSetRecord:
    id: int
    public_id: Optional[str]
    title: str
    user_id: int
    owner_nickname: str
    owner_auth0_id: str
    is_public: bool
    last_studied: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    flashcards: list[FlashcardRecord] = field(default_factory=list)


@dataclass
class ConnectionRecord:
    id: int
    mind_map_id: int
    source_id: int
    target_id: int
    relationship: str


@dataclass
class NodeLayoutRecord:
    id: int
    mind_map_id: int
    flashcard_id: int
    x_position: float
    y_position: float
    data: str


@dataclass
class MindMapRecord:
    id: int
    public_id: Optional[str]
    title: str
    set_id: int
    user_id: int
    is_public: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    connections: list[ConnectionRecord] = field(default_factory=list)
    node_layouts: list[NodeLayoutRecord] = field(default_factory=list)


@dataclass
class BlockScoreRecord:
    id: int
    user_id: int
    nickname: str
    flashcard_set_id: int
    time_seconds: int
    correct_attempts: int
    total_attempts: int
    played_at: Optional[datetime] = None


@dataclass
class NewFlashcard:
    term: str
    solution: str
    concept: str = ""


@dataclass
class FlashcardChange:
    """One entry of a batch flashcard edit submitted with a set update."""

    id: int = 0
    term: str = ""
    solution: str = ""
    concept: str = ""
    should_create: bool = False
    should_update: bool = False
    should_delete: bool = False


@dataclass
class NewConnection:
    source_id: int
    target_id: int
    relationship: str = ""


@dataclass
class NewNodeLayout:
    flashcard_id: int
    x_position: float
    y_position: float
    data: str = ""


class DbClient(Protocol):
    """Interface for database access."""

    def sync_user(self, auth0_id: str, nickname: str) -> UserRecord:
        ...

    def get_user_by_auth0_id(self, auth0_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_nickname(self, nickname: str) -> Optional[UserRecord]:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def create_set(
        self,
        owner_id: int,
        title: str,
        is_public: bool,
        flashcards: Iterable[NewFlashcard] = (),
    ) -> FlashcardSetRecord:
        ...

    def get_set(self, public_id: str) -> Optional[FlashcardSetRecord]:
        ...

    def get_set_by_id(self, set_id: int) -> Optional[FlashcardSetRecord]:
        ...

    def list_sets_for_user(
        self, user_id: int, *, include_private: bool
    ) -> list[FlashcardSetRecord]:
        ...

    def update_set(
        self,
        set_id: int,
        *,
        title: Optional[str] = None,
        is_public: Optional[bool] = None,
        changes: Optional[Iterable[FlashcardChange]] = None,
    ) -> Optional[FlashcardSetRecord]:
        ...

    def delete_set(self, set_id: int) -> bool:
        ...

    def list_flashcards(self, set_id: int) -> list[FlashcardRecord]:
        ...

    def get_flashcard(self, public_id: str) -> Optional[FlashcardRecord]:
        ...

    def create_flashcard(self, set_id: int, card: NewFlashcard) -> FlashcardRecord:
        ...

    def update_flashcard(
        self,
        set_id: int,
        public_id: str,
        *,
        term: Optional[str] = None,
        solution: Optional[str] = None,
        concept: Optional[str] = None,
    ) -> Optional[FlashcardRecord]:
        ...

    def delete_flashcard(self, set_id: int, public_id: str) -> bool:
        ...

    def list_mind_maps_for_set(
        self, set_id: int, *, include_private: bool
    ) -> list[MindMapRecord]:
        ...

    def list_mind_maps_for_user(
        self, user_id: int, *, include_private: bool
    ) -> list[MindMapRecord]:
        ...

    def get_mind_map(self, set_id: int, public_id: str) -> Optional[MindMapRecord]:
        ...

    def mind_map_title_exists(self, set_id: int, user_id: int, title: str) -> bool:
        ...

    def save_mind_map(
        self,
        set_id: int,
        user_id: int,
        public_id: Optional[str] = None,
        *,
        title: Optional[str] = None,
        is_public: Optional[bool] = None,
        connections: Optional[Iterable[NewConnection]] = None,
        node_layouts: Optional[Iterable[NewNodeLayout]] = None,
    ) -> Optional[MindMapRecord]:
        ...

    def replace_connections(
        self, set_id: int, public_id: str, connections: Iterable[NewConnection]
    ) -> Optional[MindMapRecord]:
        ...

    def replace_layouts(
        self, set_id: int, public_id: str, node_layouts: Iterable[NewNodeLayout]
    ) -> Optional[MindMapRecord]:
        ...

    def delete_mind_map(self, set_id: int, public_id: str) -> bool:
        ...

    def list_block_scores(self, set_id: int) -> list[BlockScoreRecord]:
        ...

    def create_block_score(
        self,
        user_id: int,
        set_id: int,
        *,
        time_seconds: int,
        correct_attempts: int,
        total_attempts: int,
    ) -> BlockScoreRecord:
        ...


def _to_user_record(row: UserRow) -> UserRecord:
    return UserRecord(
        id=row.id,
        nickname=row.nickname,
        auth0_id=row.auth0_id,
        created_at=row.created_at,
    )


def _to_flashcard_record(row: FlashcardRow) -> FlashcardRecord:
    return FlashcardRecord(
        id=row.id,
        public_id=row.public_id,
        set_id=row.set_id,
        term=row.term,
        solution=row.solution,
        concept=row.concept or "",
        difficulty=row.difficulty or 0,
        times_reviewed=row.times_reviewed or 0,
        last_reviewed=row.last_reviewed,
        mastered=bool(row.mastered),
    )


def _to_set_record(row: FlashcardSetRow) -> FlashcardSetRecord:
    return FlashcardSetRecord(
        id=row.id,
        public_id=row.public_id,
        title=row.title,
        user_id=row.user_id,
        owner_nickname=row.user.nickname,
        owner_auth0_id=row.user.auth0_id,
        is_public=bool(row.is_public),
        last_studied=row.last_studied,
        created_at=row.created_at,
        updated_at=row.updated_at,
        flashcards=[_to_flashcard_record(card) for card in row.flashcards],
    )


def _to_mind_map_record(row: MindMapRow) -> MindMapRecord:
    return MindMapRecord(
        id=row.id,
        public_id=row.public_id,
        title=row.title,
        set_id=row.set_id,
        user_id=row.user_id,
        is_public=bool(row.is_public),
        created_at=row.created_at,
        updated_at=row.updated_at,
        connections=[
            ConnectionRecord(
                id=conn.id,
                mind_map_id=conn.mind_map_id,
                source_id=conn.source_id,
                target_id=conn.target_id,
                relationship=conn.relationship_label or "",
            )
            for conn in row.connections
        ],
        node_layouts=[
            NodeLayoutRecord(
                id=layout.id,
                mind_map_id=layout.mind_map_id,
                flashcard_id=layout.flashcard_id,
                x_position=layout.x_position,
                y_position=layout.y_position,
                data=layout.data or "",
            )
            for layout in row.node_layouts
        ],
    )


def _to_block_score_record(row: BlocksScoreRow) -> BlockScoreRecord:
    return BlockScoreRecord(
        id=row.id,
        user_id=row.user_id,
        nickname=row.user.nickname,
        flashcard_set_id=row.flashcard_set_id,
        time_seconds=row.time_seconds,
        correct_attempts=row.correct_attempts,
        total_attempts=row.total_attempts,
        played_at=row.played_at,
    )


def _check_card_fields(term: str, solution: str) -> None:
    if not term or not solution:
        raise InvalidPayloadError("Each flashcard must have a term and solution")


def _backfill_public_ids(rows: Iterable) -> int:
    """Assign public ids to rows created before they existed."""
    count = 0
    for row in rows:
        if not row.public_id:
            row.public_id = new_public_id()
            count += 1
    return count


_SET_LOAD_OPTIONS = (
    selectinload(FlashcardSetRow.user),
    selectinload(FlashcardSetRow.flashcards),
)

_MIND_MAP_LOAD_OPTIONS = (
    selectinload(MindMapRow.connections),
    selectinload(MindMapRow.node_layouts),
)


class SqlAlchemyDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, **engine_kwargs):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlAlchemyDbClient")
        if not database_url.startswith("sqlite"):
            engine_kwargs.setdefault("pool_pre_ping", True)
            engine_kwargs.setdefault("pool_recycle", 1800)
        self.engine = create_engine(database_url, future=True, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @classmethod
    def in_memory(cls) -> "SqlAlchemyDbClient":
        """SQLite database shared by every session of this process."""
        return cls(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    # Users

    def sync_user(self, auth0_id: str, nickname: str) -> UserRecord:
        with self.Session() as session:
            user = session.execute(
                select(UserRow).where(UserRow.auth0_id == auth0_id)
            ).scalar_one_or_none()
            if user is None:
                user = UserRow(auth0_id=auth0_id, nickname=nickname or auth0_id)
                session.add(user)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    # A concurrent first request for the same subject won the insert.
                    existing = session.execute(
                        select(UserRow).where(UserRow.auth0_id == auth0_id)
                    ).scalar_one_or_none()
                    if existing is not None:
                        return _to_user_record(existing)
                    raise ConflictError(
                        f"Nickname {user.nickname} is already taken"
                    ) from exc
                logger.info("Created new user: %s", user.nickname)
                return _to_user_record(user)

            if nickname and user.nickname != nickname:
                taken = session.execute(
                    select(UserRow.id).where(UserRow.nickname == nickname)
                ).first()
                if taken:
                    logger.warning(
                        "Not renaming user %s to %s: nickname already taken",
                        user.nickname,
                        nickname,
                    )
                else:
                    user.nickname = nickname
                    session.commit()
                    logger.info("Updated user nickname: %s", user.nickname)
            return _to_user_record(user)

    def get_user_by_auth0_id(self, auth0_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            user = session.execute(
                select(UserRow).where(UserRow.auth0_id == auth0_id)
            ).scalar_one_or_none()
            return _to_user_record(user) if user else None

    def get_user_by_nickname(self, nickname: str) -> Optional[UserRecord]:
        with self.Session() as session:
            user = session.execute(
                select(UserRow).where(UserRow.nickname == nickname)
            ).scalar_one_or_none()
            return _to_user_record(user) if user else None

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.execute(select(UserRow).order_by(UserRow.id)).scalars()
            return [_to_user_record(row) for row in rows]

    # Flashcard sets

    def _load_set(self, session: Session, set_id: int) -> Optional[FlashcardSetRow]:
        return session.execute(
            select(FlashcardSetRow)
            .options(*_SET_LOAD_OPTIONS)
            .where(FlashcardSetRow.id == set_id)
        ).scalar_one_or_none()

    def create_set(
        self,
        owner_id: int,
        title: str,
        is_public: bool,
        flashcards: Iterable[NewFlashcard] = (),
    ) -> FlashcardSetRecord:
        with self.Session() as session:
            flashcard_set = FlashcardSetRow(
                title=title,
                user_id=owner_id,
                is_public=is_public,
                public_id=new_public_id(),
            )
            session.add(flashcard_set)
            for card in flashcards:
                _check_card_fields(card.term, card.solution)
                flashcard_set.flashcards.append(
                    FlashcardRow(
                        term=card.term,
                        solution=card.solution,
                        concept=card.concept or "",
                        public_id=new_public_id(),
                    )
                )
            session.commit()
            logger.info(
                "Created set public_id=%s for user_id=%d",
                flashcard_set.public_id,
                owner_id,
            )
            return _to_set_record(self._load_set(session, flashcard_set.id))

    def get_set(self, public_id: str) -> Optional[FlashcardSetRecord]:
        with self.Session() as session:
            row = session.execute(
                select(FlashcardSetRow)
                .options(*_SET_LOAD_OPTIONS)
                .where(FlashcardSetRow.public_id == public_id)
            ).scalar_one_or_none()
            return _to_set_record(row) if row else None

    def get_set_by_id(self, set_id: int) -> Optional[FlashcardSetRecord]:
        with self.Session() as session:
            row = self._load_set(session, set_id)
            return _to_set_record(row) if row else None

    def list_sets_for_user(
        self, user_id: int, *, include_private: bool
    ) -> list[FlashcardSetRecord]:
        with self.Session() as session:
            stmt = (
                select(FlashcardSetRow)
                .options(*_SET_LOAD_OPTIONS)
                .where(FlashcardSetRow.user_id == user_id)
                .order_by(FlashcardSetRow.id)
            )
            if not include_private:
                stmt = stmt.where(FlashcardSetRow.is_public.is_(True))
            rows = session.execute(stmt).scalars().all()
            if _backfill_public_ids(rows):
                session.commit()
            return [_to_set_record(row) for row in rows]

    def update_set(
        self,
        set_id: int,
        *,
        title: Optional[str] = None,
        is_public: Optional[bool] = None,
        changes: Optional[Iterable[FlashcardChange]] = None,
    ) -> Optional[FlashcardSetRecord]:
        with self.Session() as session:
            flashcard_set = self._load_set(session, set_id)
            if flashcard_set is None:
                return None
            if title is not None:
                flashcard_set.title = title
            if is_public is not None:
                flashcard_set.is_public = is_public

            cards_by_id = {card.id: card for card in flashcard_set.flashcards}
            for change in changes or ():
                if change.id:
                    card = cards_by_id.get(change.id)
                    if card is None:
                        logger.warning(
                            "Flashcard id=%d not found in set id=%d, skipping",
                            change.id,
                            set_id,
                        )
                        continue
                    if change.should_delete:
                        self._delete_card(session, card)
                        flashcard_set.flashcards.remove(card)
                        del cards_by_id[change.id]
                    elif change.should_update:
                        _check_card_fields(change.term, change.solution)
                        card.term = change.term
                        card.solution = change.solution
                        card.concept = change.concept or ""
                elif change.should_create and not change.should_delete:
                    _check_card_fields(change.term, change.solution)
                    flashcard_set.flashcards.append(
                        FlashcardRow(
                            term=change.term,
                            solution=change.solution,
                            concept=change.concept or "",
                            public_id=new_public_id(),
                        )
                    )
            session.commit()
            logger.info("Updated set id=%d", set_id)
            return _to_set_record(self._load_set(session, set_id))

    def delete_set(self, set_id: int) -> bool:
        with self.Session() as session:
            flashcard_set = session.get(FlashcardSetRow, set_id)
            if flashcard_set is None:
                return False
            # Child rows of the set's mind maps reference flashcards too, so
            # mind maps go first.
            for mind_map in list(flashcard_set.mind_maps):
                session.delete(mind_map)
            session.flush()
            session.delete(flashcard_set)
            session.commit()
            logger.info("Deleted set id=%d", set_id)
            return True

    # Flashcards

    def list_flashcards(self, set_id: int) -> list[FlashcardRecord]:
        with self.Session() as session:
            rows = (
                session.execute(
                    select(FlashcardRow)
                    .where(FlashcardRow.set_id == set_id)
                    .order_by(FlashcardRow.id)
                )
                .scalars()
                .all()
            )
            if _backfill_public_ids(rows):
                session.commit()
            return [_to_flashcard_record(row) for row in rows]

    def get_flashcard(self, public_id: str) -> Optional[FlashcardRecord]:
        with self.Session() as session:
            row = session.execute(
                select(FlashcardRow).where(FlashcardRow.public_id == public_id)
            ).scalar_one_or_none()
            return _to_flashcard_record(row) if row else None

    def create_flashcard(self, set_id: int, card: NewFlashcard) -> FlashcardRecord:
        _check_card_fields(card.term, card.solution)
        with self.Session() as session:
            row = FlashcardRow(
                term=card.term,
                solution=card.solution,
                concept=card.concept or "",
                set_id=set_id,
                public_id=new_public_id(),
            )
            session.add(row)
            session.commit()
            return _to_flashcard_record(row)

    def _find_card(
        self, session: Session, set_id: int, public_id: str
    ) -> Optional[FlashcardRow]:
        return session.execute(
            select(FlashcardRow).where(
                FlashcardRow.public_id == public_id, FlashcardRow.set_id == set_id
            )
        ).scalar_one_or_none()

    def update_flashcard(
        self,
        set_id: int,
        public_id: str,
        *,
        term: Optional[str] = None,
        solution: Optional[str] = None,
        concept: Optional[str] = None,
    ) -> Optional[FlashcardRecord]:
        with self.Session() as session:
            card = self._find_card(session, set_id, public_id)
            if card is None:
                return None
            if term is not None:
                card.term = term
            if solution is not None:
                card.solution = solution
            if concept is not None:
                card.concept = concept
            _check_card_fields(card.term, card.solution)
            session.commit()
            return _to_flashcard_record(card)

    @staticmethod
    def _delete_card(session: Session, card: FlashcardRow) -> None:
        """Delete a flashcard together with the mind map rows that use it."""
        session.execute(
            delete(MindMapConnectionRow).where(
                (MindMapConnectionRow.source_id == card.id)
                | (MindMapConnectionRow.target_id == card.id)
            )
        )
        session.execute(
            delete(MindMapNodeLayoutRow).where(
                MindMapNodeLayoutRow.flashcard_id == card.id
            )
        )
        session.delete(card)

    def delete_flashcard(self, set_id: int, public_id: str) -> bool:
        with self.Session() as session:
            card = self._find_card(session, set_id, public_id)
            if card is None:
                return False
            self._delete_card(session, card)
            session.commit()
            return True

    # Mind maps

    def _load_mind_map(
        self, session: Session, set_id: int, public_id: str
    ) -> Optional[MindMapRow]:
        return session.execute(
            select(MindMapRow)
            .options(*_MIND_MAP_LOAD_OPTIONS)
            .where(MindMapRow.public_id == public_id, MindMapRow.set_id == set_id)
        ).scalar_one_or_none()

    def list_mind_maps_for_set(
        self, set_id: int, *, include_private: bool
    ) -> list[MindMapRecord]:
        return self._list_mind_maps(
            MindMapRow.set_id == set_id, include_private=include_private
        )

    def list_mind_maps_for_user(
        self, user_id: int, *, include_private: bool
    ) -> list[MindMapRecord]:
        return self._list_mind_maps(
            MindMapRow.user_id == user_id, include_private=include_private
        )

    def _list_mind_maps(self, criterion, *, include_private: bool) -> list[MindMapRecord]:
        with self.Session() as session:
            stmt = (
                select(MindMapRow)
                .options(*_MIND_MAP_LOAD_OPTIONS)
                .where(criterion)
                .order_by(MindMapRow.id)
            )
            if not include_private:
                stmt = stmt.where(MindMapRow.is_public.is_(True))
            rows = session.execute(stmt).scalars().all()
            if _backfill_public_ids(rows):
                session.commit()
            return [_to_mind_map_record(row) for row in rows]

    def get_mind_map(self, set_id: int, public_id: str) -> Optional[MindMapRecord]:
        with self.Session() as session:
            row = self._load_mind_map(session, set_id, public_id)
            return _to_mind_map_record(row) if row else None

    def mind_map_title_exists(self, set_id: int, user_id: int, title: str) -> bool:
        with self.Session() as session:
            count = session.execute(
                select(func.count(MindMapRow.id)).where(
                    MindMapRow.set_id == set_id,
                    MindMapRow.user_id == user_id,
                    MindMapRow.title == title,
                )
            ).scalar_one()
            return count > 0

    def save_mind_map(
        self,
        set_id: int,
        user_id: int,
        public_id: Optional[str] = None,
        *,
        title: Optional[str] = None,
        is_public: Optional[bool] = None,
        connections: Optional[Iterable[NewConnection]] = None,
        node_layouts: Optional[Iterable[NewNodeLayout]] = None,
    ) -> Optional[MindMapRecord]:
        """
        Create (public_id is None) or update a mind map and replace its child rows.

        Connections and node layouts are only touched when given; a given list
        replaces the stored one. Every flashcard they reference must belong to
        the set, otherwise InvalidReferenceError is raised and nothing is
        written. Returns None when updating a mind map that is not in the set.
        """
        with self.Session() as session:
            if public_id is None:
                if not title:
                    raise InvalidPayloadError("Mind map title is required")
                mind_map = MindMapRow(
                    title=title,
                    set_id=set_id,
                    user_id=user_id,
                    is_public=bool(is_public),
                    public_id=new_public_id(),
                )
                session.add(mind_map)
                session.flush()
            else:
                mind_map = self._load_mind_map(session, set_id, public_id)
                if mind_map is None:
                    return None
                if title is not None:
                    if not title:
                        raise InvalidPayloadError("Mind map title is required")
                    mind_map.title = title
                if is_public is not None:
                    mind_map.is_public = is_public

            if connections is not None or node_layouts is not None:
                card_ids = self._set_card_ids(session, set_id)
                if connections is not None:
                    self._replace_connections(session, mind_map, card_ids, connections)
                if node_layouts is not None:
                    self._replace_layouts(session, mind_map, card_ids, node_layouts)

            session.commit()
            logger.info(
                "Saved mind map public_id=%s in set id=%d", mind_map.public_id, set_id
            )
            session.refresh(mind_map)
            return _to_mind_map_record(mind_map)

    def replace_connections(
        self, set_id: int, public_id: str, connections: Iterable[NewConnection]
    ) -> Optional[MindMapRecord]:
        with self.Session() as session:
            mind_map = self._load_mind_map(session, set_id, public_id)
            if mind_map is None:
                return None
            card_ids = self._set_card_ids(session, set_id)
            self._replace_connections(session, mind_map, card_ids, connections)
            session.commit()
            session.refresh(mind_map)
            return _to_mind_map_record(mind_map)

    def replace_layouts(
        self, set_id: int, public_id: str, node_layouts: Iterable[NewNodeLayout]
    ) -> Optional[MindMapRecord]:
        with self.Session() as session:
            mind_map = self._load_mind_map(session, set_id, public_id)
            if mind_map is None:
                return None
            card_ids = self._set_card_ids(session, set_id)
            self._replace_layouts(session, mind_map, card_ids, node_layouts)
            session.commit()
            session.refresh(mind_map)
            return _to_mind_map_record(mind_map)

    @staticmethod
    def _set_card_ids(session: Session, set_id: int) -> set[int]:
        return set(
            session.execute(
                select(FlashcardRow.id).where(FlashcardRow.set_id == set_id)
            ).scalars()
        )

    @staticmethod
    def _replace_connections(
        session: Session,
        mind_map: MindMapRow,
        card_ids: set[int],
        connections: Iterable[NewConnection],
    ) -> None:
        new_rows = []
        seen: set[tuple[int, int]] = set()
        for conn in connections:
            if not conn.source_id or not conn.target_id:
                raise InvalidReferenceError(
                    "Each connection must have a source and target flashcard"
                )
            if conn.source_id == conn.target_id:
                raise InvalidReferenceError(
                    f"Flashcard {conn.source_id} cannot be connected to itself"
                )
            if conn.source_id not in card_ids or conn.target_id not in card_ids:
                raise InvalidReferenceError("Invalid source or target flashcard")
            edge = (conn.source_id, conn.target_id)
            if edge in seen:
                raise InvalidReferenceError(
                    f"Duplicate connection {conn.source_id} -> {conn.target_id}"
                )
            seen.add(edge)
            new_rows.append(
                MindMapConnectionRow(
                    source_id=conn.source_id,
                    target_id=conn.target_id,
                    relationship_label=conn.relationship or "",
                )
            )
        mind_map.connections.clear()
        session.flush()
        mind_map.connections.extend(new_rows)

    @staticmethod
    def _replace_layouts(
        session: Session,
        mind_map: MindMapRow,
        card_ids: set[int],
        node_layouts: Iterable[NewNodeLayout],
    ) -> None:
        new_rows = []
        seen: set[int] = set()
        for layout in node_layouts:
            if layout.flashcard_id not in card_ids:
                raise InvalidReferenceError(
                    "Invalid flashcard reference in node layout"
                )
            if layout.flashcard_id in seen:
                raise InvalidReferenceError(
                    f"Duplicate node layout for flashcard {layout.flashcard_id}"
                )
            seen.add(layout.flashcard_id)
            new_rows.append(
                MindMapNodeLayoutRow(
                    flashcard_id=layout.flashcard_id,
                    x_position=layout.x_position,
                    y_position=layout.y_position,
                    data=layout.data or "",
                )
            )
        mind_map.node_layouts.clear()
        session.flush()
        mind_map.node_layouts.extend(new_rows)

    def delete_mind_map(self, set_id: int, public_id: str) -> bool:
        with self.Session() as session:
            mind_map = self._load_mind_map(session, set_id, public_id)
            if mind_map is None:
                return False
            session.delete(mind_map)
            session.commit()
            return True

    # Blocks leaderboard

    def list_block_scores(self, set_id: int) -> list[BlockScoreRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(BlocksScoreRow)
                .options(selectinload(BlocksScoreRow.user))
                .where(BlocksScoreRow.flashcard_set_id == set_id)
                .order_by(BlocksScoreRow.time_seconds.asc(), BlocksScoreRow.id.asc())
            ).scalars()
            return [_to_block_score_record(row) for row in rows]

    def create_block_score(
        self,
        user_id: int,
        set_id: int,
        *,
        time_seconds: int,
        correct_attempts: int,
        total_attempts: int,
    ) -> BlockScoreRecord:
        if correct_attempts > total_attempts:
            raise InvalidPayloadError(
                "Correct attempts cannot exceed total attempts"
            )
        with self.Session() as session:
            row = BlocksScoreRow(
                user_id=user_id,
                flashcard_set_id=set_id,
                time_seconds=time_seconds,
                correct_attempts=correct_attempts,
                total_attempts=total_attempts,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_block_score_record(row)

    # Maintenance

    def backfill_public_ids(self, batch_size: int = 500) -> dict[str, int]:
        """Assign public ids to every legacy row that still lacks one."""
        counts: dict[str, int] = {}
        for name, row_type in (
            ("sets", FlashcardSetRow),
            ("flashcards", FlashcardRow),
            ("mind_maps", MindMapRow),
        ):
            total = 0
            with self.Session() as session:
                while True:
                    rows = (
                        session.execute(
                            select(row_type)
                            .where(
                                or_(row_type.public_id.is_(None), row_type.public_id == "")
                            )
                            .order_by(row_type.id)
                            .limit(batch_size)
                        )
                        .scalars()
                        .all()
                    )
                    if not rows:
                        break
                    total += _backfill_public_ids(rows)
                    session.commit()
            counts[name] = total
        return counts
