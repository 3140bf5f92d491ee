"""
SQLAlchemy database models.
Defines the jobs table and the append-only failure history.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job record representing one unit of deferred work.

    The row exists only while the work is outstanding: success and exhausted
    retries both delete it.

    Key constraints:
    - locked_at and locked_by are set and cleared together
    - run_at is always set (enqueue defaults it to the current time)
    - handler is written once at enqueue and never rewritten
    """

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    # Encoded payload (discriminator + arguments)
    handler: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Scheduling
    run_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )

    # Lease management
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        # Index for candidate selection ordering
        Index("ix_jobs_priority_run_at", "priority", "run_at"),
    )

    @property
    def is_locked(self) -> bool:
        """Check whether the job currently carries a lease."""
        return self.locked_by is not None

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, priority={self.priority}, "
            f"attempts={self.attempts}, locked_by={self.locked_by})"
        )


class JobFailure(Base):
    """
    One failed execution of a job.

    Rows are only appended. job_id is not a foreign key so the history
    outlives the job row it describes.
    """

    __tablename__ = "job_failures"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    job_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    trace: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"JobFailure(id={self.id}, job_id={self.job_id}, message={self.message!r})"
