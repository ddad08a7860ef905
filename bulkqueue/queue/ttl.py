"""
Retention policy for job records.

Every record carries a ttl_expires_at deadline. It starts at the hard cap
(created_at + job data TTL) and is recomputed on the terminal transition,
never extending past the hard cap.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from bulkqueue.config import Settings, get_settings
from bulkqueue.constants import JobStatus
from bulkqueue.types.api import DurationUnits, TTLConfiguration, TTLConfigResponse, TTLSummary
from bulkqueue.types.job import JobRecord, TTLInfo


def _units(delta: timedelta) -> DurationUnits:
    seconds = delta.total_seconds()
    return DurationUnits(
        milliseconds=seconds * 1000,
        seconds=seconds,
        minutes=seconds / 60,
        hours=seconds / 3600,
        days=seconds / 86400,
    )


@dataclass(frozen=True)
class TTLPolicy:
    """Retention windows for job data."""

    job_data_ttl: timedelta = timedelta(days=3)
    completed_retention: timedelta = timedelta(minutes=1)
    failed_retention: timedelta = timedelta(minutes=5)
    sweep_interval: timedelta = timedelta(hours=1)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TTLPolicy":
        """Build the policy from deployment settings."""
        settings = settings or get_settings()
        return cls(
            job_data_ttl=timedelta(seconds=settings.ttl_job_data_seconds),
            completed_retention=timedelta(seconds=settings.ttl_completed_job_seconds),
            failed_retention=timedelta(seconds=settings.ttl_failed_job_seconds),
            sweep_interval=timedelta(seconds=settings.reaper_interval_seconds),
        )

    def initial_expiry(self, created_at: datetime) -> datetime:
        """Hard cap deadline, applied to every record at creation."""
        return created_at + self.job_data_ttl

    def terminal_expiry(
        self,
        status: JobStatus,
        created_at: datetime,
        completed_at: datetime,
    ) -> datetime:
        """
        Deadline after a terminal transition.

        Args:
            status: COMPLETED or FAILED.
            created_at: Record creation time.
            completed_at: Time of the terminal transition.

        Returns:
            The earlier of the state retention deadline and the hard cap.
        """
        if status == JobStatus.COMPLETED:
            deadline = completed_at + self.completed_retention
        elif status == JobStatus.FAILED:
            deadline = completed_at + self.failed_retention
        else:
            raise ValueError(f"Not a terminal status: {status}")
        return min(deadline, self.initial_expiry(created_at))

    def hard_cap_cutoff(self, now: datetime) -> datetime:
        """Records created at or before this instant have outlived the hard cap."""
        return now - self.job_data_ttl

    def describe_job(self, record: JobRecord, now: datetime) -> TTLInfo:
        """Retention details shown on status reads."""
        remaining = record.ttl_expires_at - now
        return TTLInfo(
            total_hours=(record.ttl_expires_at - record.created_at).total_seconds() / 3600,
            remaining_hours=max(0, int(remaining.total_seconds() // 3600)),
            expires_at=record.ttl_expires_at,
            is_expired=remaining.total_seconds() <= 0,
        )

    def summary(self) -> TTLSummary:
        return TTLSummary(
            job_data_ttl_days=self.job_data_ttl.total_seconds() / 86400,
            completed_job_cleanup_minutes=self.completed_retention.total_seconds() / 60,
            failed_job_cleanup_minutes=self.failed_retention.total_seconds() / 60,
        )

    def describe(self) -> TTLConfigResponse:
        """Full retention configuration in several unit representations."""
        summary = self.summary()
        interval_minutes = self.sweep_interval.total_seconds() / 60
        return TTLConfigResponse(
            ttl_configuration=TTLConfiguration(
                job_data_ttl=_units(self.job_data_ttl),
                completed_job_cleanup=_units(self.completed_retention),
                failed_job_cleanup=_units(self.failed_retention),
                cleanup_interval=_units(self.sweep_interval),
            ),
            features={
                "automaticCleanup": True,
                "periodicCleanup": True,
                "manualCleanup": True,
                "ttlTracking": True,
                "stalledJobDetection": True,
            },
            description={
                "jobDataTtl": f"Jobs are automatically removed after {summary.job_data_ttl_days:g} days",
                "completedJobCleanup": (
                    f"Completed jobs are cleaned up {summary.completed_job_cleanup_minutes:g} "
                    "minutes after completion"
                ),
                "failedJobCleanup": (
                    f"Failed jobs are cleaned up {summary.failed_job_cleanup_minutes:g} "
                    "minutes after failure"
                ),
                "periodicCleanup": (
                    f"Automatic cleanup runs every {interval_minutes:g} minutes to remove expired jobs"
                ),
            },
        )
