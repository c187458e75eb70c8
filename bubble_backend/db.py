"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Protocol

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from bubble_backend.errors import ConflictError, RateLimitError

MIN_DAYS_UNTIL_POP = 1
MAX_DAYS_UNTIL_POP = 36500
MAX_USERNAME_LENGTH = 50


class DbClient(Protocol):
    """Interface for database access."""

    def submit_prediction(
        self,
        *,
        username: Optional[str],
        days_until_pop: int,
        ip_hash: str,
        submitted_at: datetime,
        rate_limit_seconds: int,
    ) -> "PredictionRecord":
        ...

    def get_prediction(self, prediction_id: int) -> Optional["PredictionRecord"]:
        ...

    def get_average(self) -> tuple[Optional[float], int]:
        ...

    def get_stats(self) -> "PredictionStats":
        ...


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class PredictionRecord:
    id: int
    username: Optional[str]
    days_until_pop: int
    submitted_at: datetime
    predicted_date: datetime
    ip_hash: str = field(repr=False)

    def as_dict(self) -> dict:
        # ip_hash is deliberately left out; it never leaves the server.
        return {
            "id": self.id,
            "username": self.username,
            "days_until_pop": self.days_until_pop,
            "submitted_at": self.submitted_at.isoformat(),
            "predicted_date": self.predicted_date.isoformat(),
        }


@dataclass
class PredictionStats:
    total_predictions: int
    avg_days: Optional[float]
    min_days: Optional[int]
    max_days: Optional[int]

    def as_dict(self) -> dict:
        return {
            "total_predictions": self.total_predictions,
            "avg_days": self.avg_days,
            "min_days": self.min_days,
            "max_days": self.max_days,
        }


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.predictions: List[PredictionRecord] = []
        self.last_submission: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def submit_prediction(
        self,
        *,
        username: Optional[str],
        days_until_pop: int,
        ip_hash: str,
        submitted_at: datetime,
        rate_limit_seconds: int,
    ) -> PredictionRecord:
        with self._lock:
            last = self.last_submission.get(ip_hash)
            cutoff = submitted_at - timedelta(seconds=rate_limit_seconds)
            if last is not None and last > cutoff:
                raise RateLimitError()
            if username:
                lowered = username.lower()
                for existing in self.predictions:
                    if existing.username and existing.username.lower() == lowered:
                        raise ConflictError()
            record = PredictionRecord(
                id=len(self.predictions) + 1,
                username=username,
                days_until_pop=days_until_pop,
                submitted_at=submitted_at,
                predicted_date=submitted_at + timedelta(days=days_until_pop),
                ip_hash=ip_hash,
            )
            self.predictions.append(record)
            self.last_submission[ip_hash] = submitted_at
            return record

    def get_prediction(self, prediction_id: int) -> Optional[PredictionRecord]:
        for record in self.predictions:
            if record.id == prediction_id:
                return record
        return None

    def get_average(self) -> tuple[Optional[float], int]:
        total = len(self.predictions)
        if not total:
            return None, 0
        return sum(p.days_until_pop for p in self.predictions) / total, total

    def get_stats(self) -> PredictionStats:
        days = [p.days_until_pop for p in self.predictions]
        if not days:
            return PredictionStats(0, None, None, None)
        return PredictionStats(
            total_predictions=len(days),
            avg_days=sum(days) / len(days),
            min_days=min(days),
            max_days=max(days),
        )


def _engine_options(database_url: str) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True, "pool_recycle": 1800}
    options: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # Every connection to an in-memory SQLite database gets its own copy.
        options["poolclass"] = StaticPool
    return options


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    The rate-limit claim, the duplicate-username check and the insert share a
    single transaction. A conditional update on ``submission_throttle`` and the
    unique index on ``lower(username)`` keep concurrent submissions from both
    getting through.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url, future=True, **_engine_options(database_url)
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_record(self, row: "PredictionRow") -> PredictionRecord:
        return PredictionRecord(
            id=row.id,
            username=row.username,
            days_until_pop=row.days_until_pop,
            submitted_at=_as_utc(row.submitted_at),
            predicted_date=_as_utc(row.predicted_date),
            ip_hash=row.ip_hash,
        )

    def _claim_submission_slot(
        self, session: Session, ip_hash: str, now: datetime, window_seconds: int
    ) -> bool:
        cutoff = now - timedelta(seconds=window_seconds)
        result = session.execute(
            update(ThrottleRow)
            .where(
                ThrottleRow.ip_hash == ip_hash,
                ThrottleRow.last_submitted_at <= cutoff,
            )
            .values(last_submitted_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return True
        if session.get(ThrottleRow, ip_hash) is not None:
            return False
        # First submission from this address; a racing insert fails on the primary key.
        session.add(ThrottleRow(ip_hash=ip_hash, last_submitted_at=now))
        return True

    def _username_taken(self, session: Session, username: str) -> bool:
        stmt = (
            select(PredictionRow.id)
            .where(
                PredictionRow.username.is_not(None),
                func.lower(PredictionRow.username) == func.lower(username),
            )
            .limit(1)
        )
        return session.execute(stmt).first() is not None

    def submit_prediction(
        self,
        *,
        username: Optional[str],
        days_until_pop: int,
        ip_hash: str,
        submitted_at: datetime,
        rate_limit_seconds: int,
    ) -> PredictionRecord:
        row = PredictionRow(
            username=username,
            days_until_pop=days_until_pop,
            submitted_at=submitted_at,
            predicted_date=submitted_at + timedelta(days=days_until_pop),
            ip_hash=ip_hash,
        )
        try:
            with self.Session() as session, session.begin():
                if not self._claim_submission_slot(
                    session, ip_hash, submitted_at, rate_limit_seconds
                ):
                    raise RateLimitError()
                if username and self._username_taken(session, username):
                    raise ConflictError()
                session.add(row)
                session.flush()
        except IntegrityError:
            # Lost a race with a concurrent submission; report the guard it hit.
            with self.Session() as session:
                if username and self._username_taken(session, username):
                    raise ConflictError() from None
            raise RateLimitError() from None
        return self._to_record(row)

    def get_prediction(self, prediction_id: int) -> Optional[PredictionRecord]:
        with self.Session() as session:
            row = session.get(PredictionRow, prediction_id)
            if not row:
                return None
            return self._to_record(row)

    def get_average(self) -> tuple[Optional[float], int]:
        with self.Session() as session:
            avg_days, total = session.execute(
                select(
                    func.avg(PredictionRow.days_until_pop),
                    func.count(PredictionRow.id),
                )
            ).one()
        return (float(avg_days) if avg_days is not None else None), int(total)

    def get_stats(self) -> PredictionStats:
        with self.Session() as session:
            total, avg_days, min_days, max_days = session.execute(
                select(
                    func.count(PredictionRow.id),
                    func.avg(PredictionRow.days_until_pop),
                    func.min(PredictionRow.days_until_pop),
                    func.max(PredictionRow.days_until_pop),
                )
            ).one()
        return PredictionStats(
            total_predictions=int(total),
            avg_days=float(avg_days) if avg_days is not None else None,
            min_days=min_days,
            max_days=max_days,
        )


Base = declarative_base()


class PredictionRow(Base):
    __tablename__ = "predictions"
    __table_args__ = (
        CheckConstraint(
            f"days_until_pop BETWEEN {MIN_DAYS_UNTIL_POP} AND {MAX_DAYS_UNTIL_POP}",
            name="ck_predictions_days_until_pop",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(MAX_USERNAME_LENGTH), nullable=True)
    days_until_pop = Column(Integer, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=False)
    predicted_date = Column(DateTime(timezone=True), nullable=False)
    ip_hash = Column(String(64), nullable=False, index=True)


Index(
    "uq_predictions_username_lower",
    func.lower(PredictionRow.username),
    unique=True,
)


class ThrottleRow(Base):
    __tablename__ = "submission_throttle"

    ip_hash = Column(String(64), primary_key=True)
    last_submitted_at = Column(DateTime(timezone=True), nullable=False)
