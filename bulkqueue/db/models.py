"""
SQLAlchemy database models.
Defines the job_records table.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from bulkqueue.constants import JobStatus, QueueName
from bulkqueue.types.job import JobRecord

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobRecordModel(Base):
    """
    Row holding one job record.

    Key constraints:
    - (queue_name, id) is the primary key; ids may repeat across queues
    - status transitions are applied with conditional updates on status
    - ttl_expires_at drives the reaper sweep
    """

    __tablename__ = "job_records"

    queue_name: Mapped[QueueName] = mapped_column(
        Enum(QueueName, name="queue_name", values_callable=lambda x: [e.value for e in x]),
        primary_key=True,
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    organization_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    payload: Mapped[list] = mapped_column(JSONType, nullable=False)
    request_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.QUEUED,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    failed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Timestamps (naive UTC)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ttl_expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    __table_args__ = (
        # FIFO claim polling
        Index("ix_job_records_claim", "queue_name", "status", "created_at"),
        # Stalled job checks
        Index("ix_job_records_lease_expiry", "status", "lease_expires_at"),
    )

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobRecordModel":
        return cls(
            queue_name=record.queue_name,
            id=record.id,
            organization_id=record.organization_id,
            payload=record.payload,
            request_metadata=record.request_metadata,
            status=record.status,
            progress=record.progress,
            attempts_made=record.attempts_made,
            result=record.result,
            failed_reason=record.failed_reason,
            lease_owner=record.lease_owner,
            lease_expires_at=record.lease_expires_at,
            created_at=record.created_at,
            processed_at=record.processed_at,
            completed_at=record.completed_at,
            ttl_expires_at=record.ttl_expires_at,
        )

    def to_record(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            queue_name=QueueName(self.queue_name),
            organization_id=self.organization_id,
            payload=list(self.payload or []),
            request_metadata=dict(self.request_metadata or {}),
            status=JobStatus(self.status),
            progress=self.progress,
            result=self.result,
            failed_reason=self.failed_reason,
            attempts_made=self.attempts_made,
            lease_owner=self.lease_owner,
            lease_expires_at=self.lease_expires_at,
            created_at=self.created_at,
            processed_at=self.processed_at,
            completed_at=self.completed_at,
            ttl_expires_at=self.ttl_expires_at,
        )

    def __repr__(self) -> str:
        return (
            f"JobRecordModel(queue={self.queue_name}, id={self.id}, "
            f"status={self.status}, progress={self.progress})"
        )
