"""SQLAlchemy-backed schedule store.

Schedules live in ``recurring_schedules``; every materialization inserts a row
into ``schedule_postings``, whose unique constraint on
``(schedule_id, occurrence_date)`` is what makes posting at-most-once even
across processes. ``schedule_reminders`` does the same for bill reminders.

Every write bumps ``recurring_schedules.version``; conditional writes match
on the version the caller read, so a stale read-modify-write from another
process fails instead of overwriting newer fields.
"""

from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    select,
    update,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from ledger_scheduler.errors import (
    ConcurrentUpdateError,
    DuplicatePostingError,
    ScheduleNotFoundError,
    SchedulerError,
)
from ledger_scheduler.recurrence import Frequency, RecurrenceRule
from ledger_scheduler.schedules import (
    Posting,
    ScheduleRecord,
    TransactionTemplate,
    TransactionType,
)
from ledger_scheduler.store.base import ScheduleStore

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


class ScheduleRow(Base):
    __tablename__ = "recurring_schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    household_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)

    # Template transaction details
    account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType, native_enum=False), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    description: Mapped[str | None] = mapped_column(Text)
    merchant: Mapped[str | None] = mapped_column(Text)
    category_id: Mapped[str | None] = mapped_column(String(36))
    transfer_account_id: Mapped[str | None] = mapped_column(String(36))

    # Rule
    frequency: Mapped[Frequency] = mapped_column(
        SAEnum(Frequency, native_enum=False), nullable=False
    )
    day_of_week: Mapped[int | None] = mapped_column(Integer)
    day_of_month: Mapped[int | None] = mapped_column(Integer)
    month: Mapped[int | None] = mapped_column(Integer)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)

    # State
    next_occurrence: Mapped[date | None] = mapped_column(Date, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_occurrence: Mapped[date | None] = mapped_column(Date)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PostingRow(Base):
    __tablename__ = "schedule_postings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[str] = mapped_column(
        ForeignKey("recurring_schedules.id", ondelete="CASCADE"), nullable=False
    )
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("schedule_id", "occurrence_date", name="uq_schedule_posting_date"),
    )


class ReminderRow(Base):
    __tablename__ = "schedule_reminders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[str] = mapped_column(
        ForeignKey("recurring_schedules.id", ondelete="CASCADE"), nullable=False
    )
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("schedule_id", "occurrence_date", name="uq_schedule_reminder_date"),
    )


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _optional_uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def _row_values(schedule: ScheduleRecord) -> dict[str, Any]:
    t = schedule.template
    r = schedule.rule
    return {
        "household_id": str(schedule.household_id),
        "account_id": str(t.account_id),
        "type": t.type,
        "amount": t.amount,
        "currency": t.currency,
        "description": t.description,
        "merchant": t.merchant,
        "category_id": str(t.category_id) if t.category_id else None,
        "transfer_account_id": str(t.transfer_account_id) if t.transfer_account_id else None,
        "frequency": r.frequency,
        "day_of_week": r.day_of_week,
        "day_of_month": r.day_of_month,
        "month": r.month,
        "start_date": r.start_date,
        "end_date": r.end_date,
        "next_occurrence": schedule.next_occurrence,
        "is_active": schedule.is_active,
        "auto_create": schedule.auto_create,
        "occurrence_count": schedule.occurrence_count,
        "last_occurrence": schedule.last_occurrence,
        "created_at": schedule.created_at,
        "updated_at": schedule.updated_at,
    }


def _next_occurrence_is(expected: date | None) -> Any:
    column = ScheduleRow.next_occurrence
    return column.is_(None) if expected is None else column == expected


def _to_record(row: ScheduleRow) -> ScheduleRecord:
    return ScheduleRecord(
        id=UUID(row.id),
        household_id=UUID(row.household_id),
        template=TransactionTemplate(
            account_id=UUID(row.account_id),
            type=row.type,
            amount=Decimal(row.amount),
            currency=row.currency,
            description=row.description,
            merchant=row.merchant,
            category_id=_optional_uuid(row.category_id),
            transfer_account_id=_optional_uuid(row.transfer_account_id),
        ),
        rule=RecurrenceRule(
            frequency=row.frequency,
            start_date=row.start_date,
            end_date=row.end_date,
            day_of_week=row.day_of_week,
            day_of_month=row.day_of_month,
            month=row.month,
        ),
        next_occurrence=row.next_occurrence,
        is_active=row.is_active,
        auto_create=row.auto_create,
        occurrence_count=row.occurrence_count,
        last_occurrence=row.last_occurrence,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        version=row.version,
    )


def _to_posting(row: PostingRow) -> Posting:
    return Posting(
        schedule_id=UUID(row.schedule_id),
        occurrence_date=row.occurrence_date,
        transaction_id=row.transaction_id,
        created_at=_aware(row.created_at),
    )


def build_engine(database_url: str) -> Engine:
    """Create an engine, enabling foreign keys and WAL for SQLite."""
    is_sqlite = database_url.startswith("sqlite")
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    if is_sqlite:

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if ":memory:" not in database_url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


class SqlScheduleStore(ScheduleStore):
    """Schedule store persisted through SQLAlchemy."""

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if database_url is None:
                from ledger_scheduler.config import get_settings

                database_url = get_settings().database_url
            engine = build_engine(database_url)
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._logger = logger.bind(component="sql_store")

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    @staticmethod
    def _require(session: Session, schedule_id: UUID) -> ScheduleRow:
        row = session.get(ScheduleRow, str(schedule_id))
        if row is None:
            raise ScheduleNotFoundError(schedule_id)
        return row

    def create(self, schedule: ScheduleRecord) -> ScheduleRecord:
        with self._sessions.begin() as session:
            if session.get(ScheduleRow, str(schedule.id)) is not None:
                raise SchedulerError(f"Recurring schedule {schedule.id} already exists")
            session.add(
                ScheduleRow(
                    id=str(schedule.id), version=schedule.version, **_row_values(schedule)
                )
            )
        self._logger.debug("schedule_stored", schedule_id=str(schedule.id))
        return schedule

    def get(self, schedule_id: UUID) -> ScheduleRecord:
        with self._sessions() as session:
            return _to_record(self._require(session, schedule_id))

    def update(self, schedule: ScheduleRecord) -> ScheduleRecord:
        with self._sessions.begin() as session:
            version = self._require(session, schedule.id).version + 1
            session.execute(
                update(ScheduleRow)
                .where(ScheduleRow.id == str(schedule.id))
                .values(version=version, **_row_values(schedule))
                .execution_options(synchronize_session=False)
            )
        return replace(schedule, version=version)

    def compare_and_update(
        self, schedule: ScheduleRecord, expected_next_occurrence: date | None
    ) -> ScheduleRecord:
        with self._sessions.begin() as session:
            result = session.execute(
                update(ScheduleRow)
                .where(
                    ScheduleRow.id == str(schedule.id),
                    ScheduleRow.version == schedule.version,
                    _next_occurrence_is(expected_next_occurrence),
                )
                .values(version=schedule.version + 1, **_row_values(schedule))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = self._require(session, schedule.id)
                raise ConcurrentUpdateError(
                    schedule.id, expected_next_occurrence, current.next_occurrence
                )
        return replace(schedule, version=schedule.version + 1)

    def delete(self, schedule_id: UUID) -> None:
        with self._sessions.begin() as session:
            row = self._require(session, schedule_id)
            for child in (PostingRow, ReminderRow):
                session.execute(delete(child).where(child.schedule_id == str(schedule_id)))
            session.delete(row)

    def list_schedules(self, household_id: UUID | None = None) -> list[ScheduleRecord]:
        stmt = select(ScheduleRow)
        if household_id is not None:
            stmt = stmt.where(ScheduleRow.household_id == str(household_id))
        with self._sessions() as session:
            records = [_to_record(row) for row in session.scalars(stmt)]
        return sorted(records, key=self._sort_key)

    def list_active_due(self, now: date) -> list[ScheduleRecord]:
        stmt = (
            select(ScheduleRow)
            .where(
                ScheduleRow.is_active.is_(True),
                ScheduleRow.next_occurrence.is_not(None),
                ScheduleRow.next_occurrence <= now,
            )
            .order_by(ScheduleRow.next_occurrence, ScheduleRow.created_at)
        )
        with self._sessions() as session:
            return [_to_record(row) for row in session.scalars(stmt)]

    def get_posting(self, schedule_id: UUID, occurrence_date: date) -> Posting | None:
        stmt = select(PostingRow).where(
            PostingRow.schedule_id == str(schedule_id),
            PostingRow.occurrence_date == occurrence_date,
        )
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return _to_posting(row) if row else None

    def list_postings(self, schedule_id: UUID) -> list[Posting]:
        stmt = (
            select(PostingRow)
            .where(PostingRow.schedule_id == str(schedule_id))
            .order_by(PostingRow.occurrence_date)
        )
        with self._sessions() as session:
            return [_to_posting(row) for row in session.scalars(stmt)]

    def record_materialization(
        self,
        posting: Posting,
        schedule: ScheduleRecord,
        expected_next_occurrence: date | None,
    ) -> ScheduleRecord:
        with self._sessions.begin() as session:
            row = self._require(session, schedule.id)
            session.add(
                PostingRow(
                    schedule_id=str(posting.schedule_id),
                    occurrence_date=posting.occurrence_date,
                    transaction_id=posting.transaction_id,
                    created_at=posting.created_at,
                )
            )
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicatePostingError(
                    posting.schedule_id, posting.occurrence_date
                ) from e
            result = session.execute(
                update(ScheduleRow)
                .where(
                    ScheduleRow.id == str(schedule.id),
                    _next_occurrence_is(expected_next_occurrence),
                )
                .values(version=ScheduleRow.version + 1, **self._progress(schedule))
                .execution_options(synchronize_session=False)
            )
            session.refresh(row)
            if result.rowcount == 0:
                raise ConcurrentUpdateError(
                    schedule.id, expected_next_occurrence, row.next_occurrence
                )
            return _to_record(row)

    def claim_reminder(self, schedule_id: UUID, occurrence_date: date) -> bool:
        try:
            with self._sessions.begin() as session:
                self._require(session, schedule_id)
                session.add(
                    ReminderRow(
                        schedule_id=str(schedule_id),
                        occurrence_date=occurrence_date,
                        sent_at=datetime.now(UTC),
                    )
                )
        except IntegrityError:
            return False
        return True

    def release_reminder(self, schedule_id: UUID, occurrence_date: date) -> None:
        with self._sessions.begin() as session:
            session.execute(
                delete(ReminderRow).where(
                    ReminderRow.schedule_id == str(schedule_id),
                    ReminderRow.occurrence_date == occurrence_date,
                )
            )
