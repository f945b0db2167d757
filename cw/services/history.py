"""Query history service: the local ledger of query runs."""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import func
from sqlmodel import select

from cw.core.database import get_session, write_lock
from cw.core.errors import NotFoundError
from cw.models import QueryHistory, QueryStatus

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = (
    "account",
    "status",
    "contents",
    "records_total",
    "records_matched",
    "records_scanned",
    "bytes_scanned",
)


def _next_modified_at(previous: datetime | None) -> datetime:
    """Current time, nudged past ``previous`` so it always increases."""
    now = datetime.now(UTC)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class HistoryService:
    """Service for query history persistence."""

    @staticmethod
    def upsert(record: QueryHistory) -> QueryHistory:
        """Insert a run, or update the row with the same (id, query_id).

        Every mutable field is overwritten and ``modified_at`` always moves
        forward. ``created_at`` and ``deleted_at`` of an existing row are
        kept.

        Raises:
            InvalidTransitionError: If the status change is illegal
            StoreError: If the database write fails
        """
        with write_lock, get_session() as session:
            statement = select(QueryHistory).where(
                QueryHistory.id == record.id,
                QueryHistory.query_id == record.query_id,
            )
            existing = session.execute(statement).scalar_one_or_none()

            if existing is None:
                QueryStatus(record.status)
                row = QueryHistory(
                    id=record.id,
                    query_id=record.query_id,
                    created_at=record.created_at,
                    modified_at=_next_modified_at(record.created_at),
                    deleted_at=record.deleted_at,
                    **{name: getattr(record, name) for name in MUTABLE_FIELDS},
                )
                session.add(row)
                logger.debug(f"Recorded new query run {row.id} ({row.status})")
            else:
                existing.query_status.transition_to(QueryStatus(record.status))
                for name in MUTABLE_FIELDS:
                    setattr(existing, name, getattr(record, name))
                existing.modified_at = _next_modified_at(existing.modified_at)
                session.add(existing)
                row = existing
                logger.debug(f"Updated query run {row.id} ({row.status})")

            session.commit()
            session.refresh(row)
            return row

    @staticmethod
    def get_run(run_id: str) -> QueryHistory:
        """Get a run by its identifier, including soft-deleted runs."""
        with get_session() as session:
            statement = select(QueryHistory).where(QueryHistory.id == run_id)
            row = session.execute(statement).scalar_one_or_none()

            if row is None:
                raise NotFoundError(f"Query run with id {run_id} not found")

            return row

    @staticmethod
    def list_runs(
        include_deleted: bool = False, limit: int = 100, offset: int = 0
    ) -> tuple[list[QueryHistory], int]:
        """List runs, most recent first, with the total matching count."""
        with get_session() as session:
            count_statement = select(func.count()).select_from(QueryHistory)
            statement = select(QueryHistory)
            if not include_deleted:
                count_statement = count_statement.where(
                    QueryHistory.deleted_at.is_(None)
                )
                statement = statement.where(QueryHistory.deleted_at.is_(None))

            total = session.execute(count_statement).scalar()
            statement = (
                statement.order_by(QueryHistory.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            rows = session.execute(statement).scalars().all()

            return list(rows), total

    @staticmethod
    def list_runs_by_query_id(
        query_id: str, include_deleted: bool = False
    ) -> list[QueryHistory]:
        """All runs of one query definition, most recent first."""
        with get_session() as session:
            statement = select(QueryHistory).where(QueryHistory.query_id == query_id)
            if not include_deleted:
                statement = statement.where(QueryHistory.deleted_at.is_(None))
            statement = statement.order_by(QueryHistory.created_at.desc())
            return list(session.execute(statement).scalars().all())

    @staticmethod
    def soft_delete(run_id: str) -> QueryHistory:
        """Mark a run deleted. Deleting a deleted run changes nothing."""
        with write_lock, get_session() as session:
            statement = select(QueryHistory).where(QueryHistory.id == run_id)
            row = session.execute(statement).scalar_one_or_none()

            if row is None:
                raise NotFoundError(f"Query run with id {run_id} not found")

            if row.deleted_at is None:
                row.deleted_at = datetime.now(UTC)
                row.modified_at = _next_modified_at(row.modified_at)
                session.add(row)
                session.commit()
                session.refresh(row)
                logger.info(f"Soft-deleted query run {run_id}")

            return row

    @staticmethod
    def restore(run_id: str) -> QueryHistory:
        """Undo a soft delete."""
        with write_lock, get_session() as session:
            statement = select(QueryHistory).where(QueryHistory.id == run_id)
            row = session.execute(statement).scalar_one_or_none()

            if row is None:
                raise NotFoundError(f"Query run with id {run_id} not found")

            if row.deleted_at is not None:
                row.deleted_at = None
                row.modified_at = _next_modified_at(row.modified_at)
                session.add(row)
                session.commit()
                session.refresh(row)
                logger.info(f"Restored query run {run_id}")

            return row
