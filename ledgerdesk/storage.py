from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.pool import StaticPool

from ledgerdesk.aggregation import MOVEMENT_TYPES, ReportMovement
from ledgerdesk.date_range import DateRange
from ledgerdesk.pagination import PaginationParams
from ledgerdesk.validation import USER, MovementInput

DEFAULT_DATABASE_URL = "sqlite:///./ledgerdesk.db"

logger = structlog.get_logger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255)),
    Column("email", String(255), unique=True, nullable=False),
    Column("phone", String(50)),
    Column("role", String(20), nullable=False, server_default=USER),
    Column("created_at", DateTime, nullable=False),
)

movements = Table(
    "movements",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("concept", String(500), nullable=False),
    Column("date", DateTime, nullable=False, index=True),
    Column("created_at", DateTime, nullable=False),
)


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    role: str
    created_at: datetime
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class MovementOwner:
    id: int
    email: str
    name: Optional[str] = None


@dataclass(frozen=True)
class MovementRecord:
    id: int
    type: str
    amount: Decimal
    concept: str
    date: datetime
    created_at: datetime
    user: MovementOwner

    def to_report_movement(self) -> ReportMovement:
        return ReportMovement(
            type=self.type,
            amount=self.amount,
            date=self.date,
            concept=self.concept,
            user_name=self.user.name,
            user_email=self.user.email,
        )


class Storage:
    """Handle around the SQLAlchemy engine.

    Created once at process start, shared by every request and disposed at
    shutdown.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL) -> None:
        self.database_url = database_url
        self.engine = create_engine(database_url, **_engine_options(database_url))

    @classmethod
    def from_env(cls) -> "Storage":
        return cls(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))

    def create_all(self) -> None:
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def create_user(
        self,
        email: str,
        *,
        name: str | None = None,
        phone: str | None = None,
        role: str = USER,
        created_at: datetime | None = None,
    ) -> UserRecord:
        stmt = (
            insert(users)
            .values(
                email=email.strip().lower(),
                name=name,
                phone=phone,
                role=role,
                created_at=_to_storage(created_at or utcnow()),
            )
            .returning(*users.c)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().one()
        logger.info("user_created", user_id=row["id"], role=row["role"])
        return _user_from_row(row)

    def get_user(self, user_id: int) -> UserRecord | None:
        with self.engine.begin() as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        return _user_from_row(row) if row else None

    def list_users(
        self, pagination: PaginationParams, search: str | None = None
    ) -> tuple[list[UserRecord], int]:
        conditions = []
        if search:
            needle = search.lower()
            conditions.append(
                or_(
                    func.lower(users.c.name).contains(needle, autoescape=True),
                    func.lower(users.c.email).contains(needle, autoescape=True),
                )
            )
        with self.engine.begin() as conn:
            total = conn.execute(
                select(func.count()).select_from(users).where(*conditions)
            ).scalar_one()
            rows = conn.execute(
                select(users)
                .where(*conditions)
                .order_by(users.c.created_at.desc(), users.c.id.desc())
                .offset(pagination.skip)
                .limit(pagination.limit)
            ).mappings().all()
        return [_user_from_row(row) for row in rows], int(total or 0)

    def update_user(self, user_id: int, changes: Mapping[str, Any]) -> UserRecord | None:
        stmt = (
            update(users)
            .where(users.c.id == user_id)
            .values(**changes)
            .returning(*users.c)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        if not row:
            return None
        logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        return _user_from_row(row)

    def list_movements(
        self, pagination: PaginationParams, search: str | None = None
    ) -> tuple[list[MovementRecord], int]:
        conditions = []
        if search:
            matches = [func.lower(movements.c.concept).contains(search.lower(), autoescape=True)]
            type_filter = search.upper()
            if type_filter in MOVEMENT_TYPES:
                matches.append(movements.c.type == type_filter)
            conditions.append(or_(*matches))
        with self.engine.begin() as conn:
            total = conn.execute(
                select(func.count()).select_from(movements).where(*conditions)
            ).scalar_one()
            rows = conn.execute(
                _movement_select()
                .where(*conditions)
                .order_by(movements.c.date.desc(), movements.c.created_at.desc())
                .offset(pagination.skip)
                .limit(pagination.limit)
            ).mappings().all()
        return [_movement_from_row(row) for row in rows], int(total or 0)

    def movements_in_range(self, date_range: DateRange) -> list[MovementRecord]:
        stmt = (
            _movement_select()
            .where(
                movements.c.date >= _to_storage(date_range.start),
                movements.c.date <= _to_storage(date_range.end),
            )
            .order_by(movements.c.date.asc(), movements.c.created_at.asc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_movement_from_row(row) for row in rows]

    def create_movement(
        self,
        user_id: int,
        payload: MovementInput,
        created_at: datetime | None = None,
    ) -> MovementRecord:
        stmt = (
            insert(movements)
            .values(
                user_id=user_id,
                type=payload.type,
                amount=payload.amount,
                concept=payload.concept,
                date=_to_storage(payload.date),
                created_at=_to_storage(created_at or utcnow()),
            )
            .returning(movements.c.id)
        )
        with self.engine.begin() as conn:
            movement_id = conn.execute(stmt).scalar_one()
            row = conn.execute(
                _movement_select().where(movements.c.id == movement_id)
            ).mappings().one()
        return _movement_from_row(row)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _engine_options(database_url: str) -> dict[str, Any]:
    if not database_url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if database_url in {"sqlite://", "sqlite:///:memory:"}:
        options["poolclass"] = StaticPool
    return options


def _movement_select():
    return select(
        movements,
        users.c.name.label("user_name"),
        users.c.email.label("user_email"),
    ).select_from(movements.join(users, movements.c.user_id == users.c.id))


def _movement_from_row(row: Mapping[str, Any]) -> MovementRecord:
    amount = row["amount"]
    return MovementRecord(
        id=row["id"],
        type=row["type"],
        amount=amount if isinstance(amount, Decimal) else Decimal(str(amount)),
        concept=row["concept"],
        date=_from_storage(row["date"]),
        created_at=_from_storage(row["created_at"]),
        user=MovementOwner(
            id=row["user_id"],
            name=row["user_name"],
            email=row["user_email"],
        ),
    )


def _user_from_row(row: Mapping[str, Any]) -> UserRecord:
    return UserRecord(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        role=row["role"],
        created_at=_from_storage(row["created_at"]),
    )


def _to_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
