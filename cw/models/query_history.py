"""Query history model for recorded Logs Insights runs."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Float, Index, Integer, Text, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

from cw.models.status import QueryStatus


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on sqlite which drops the offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class QueryHistory(SQLModel, table=True):
    """A single query run and its statistics."""

    __tablename__ = "query_history"
    __table_args__ = (
        UniqueConstraint("id", "query_id"),
        Index("idx_history_query_id", "query_id"),
    )

    # Primary key and timestamps
    id: str = Field(
        sa_column=Column(Text, primary_key=True),
        description="Run identifier issued by CloudWatch when the query started",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(UTCDateTime(), nullable=False),
        description="Timestamp when the run was submitted",
    )
    modified_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(UTCDateTime(), nullable=False),
        description="Timestamp of the last write to this row",
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_column=Column(UTCDateTime(), nullable=True),
        description="Set when the row has been soft-deleted",
    )

    # Run fields
    query_id: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Stable identifier of the query definition",
    )
    account: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="AWS account the run was issued against",
    )
    status: str = Field(
        default=QueryStatus.SCHEDULED.value,
        sa_column=Column(Text, nullable=False),
        description="Run status, see QueryStatus",
    )
    contents: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Query text",
    )

    # Statistics, only known once the service has scanned data
    records_total: int | None = Field(
        default=None, sa_column=Column(Integer, nullable=True)
    )
    records_matched: float | None = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    records_scanned: float | None = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    bytes_scanned: float | None = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )

    @property
    def query_status(self) -> QueryStatus:
        return QueryStatus(self.status)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
