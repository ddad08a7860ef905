"""
Unit tests for the retention policy.
"""

from datetime import datetime, timedelta

import pytest

from bulkqueue.config import Settings
from bulkqueue.constants import JobStatus, QueueName
from bulkqueue.queue.ttl import TTLPolicy
from bulkqueue.types.job import JobRecord

CREATED = datetime(2025, 1, 1, 12, 0, 0)


class TestTTLPolicy:
    """Tests for TTLPolicy."""

    @pytest.fixture
    def policy(self) -> TTLPolicy:
        return TTLPolicy()

    def test_defaults(self, policy: TTLPolicy):
        """Test the default retention windows."""
        assert policy.job_data_ttl == timedelta(days=3)
        assert policy.completed_retention == timedelta(minutes=1)
        assert policy.failed_retention == timedelta(minutes=5)
        assert policy.sweep_interval == timedelta(hours=1)

    def test_from_settings(self):
        """Test windows are read from settings."""
        settings = Settings(
            ttl_job_data_seconds=3600,
            ttl_completed_job_seconds=10,
            ttl_failed_job_seconds=20,
            reaper_interval_seconds=30,
        )

        policy = TTLPolicy.from_settings(settings)

        assert policy.job_data_ttl == timedelta(hours=1)
        assert policy.completed_retention == timedelta(seconds=10)
        assert policy.failed_retention == timedelta(seconds=20)
        assert policy.sweep_interval == timedelta(seconds=30)

    def test_initial_expiry(self, policy: TTLPolicy):
        """Test new records expire at the hard cap."""
        assert policy.initial_expiry(CREATED) == CREATED + timedelta(days=3)

    def test_completed_expiry(self, policy: TTLPolicy):
        """Test completed records expire one minute after completion."""
        completed = CREATED + timedelta(minutes=10)

        expiry = policy.terminal_expiry(JobStatus.COMPLETED, CREATED, completed)

        assert expiry == completed + timedelta(minutes=1)

    def test_failed_expiry(self, policy: TTLPolicy):
        """Test failed records expire five minutes after failure."""
        failed = CREATED + timedelta(minutes=10)

        expiry = policy.terminal_expiry(JobStatus.FAILED, CREATED, failed)

        assert expiry == failed + timedelta(minutes=5)

    def test_terminal_expiry_capped(self, policy: TTLPolicy):
        """Test a terminal deadline never passes the hard cap."""
        failed = CREATED + timedelta(days=3) - timedelta(minutes=1)

        expiry = policy.terminal_expiry(JobStatus.FAILED, CREATED, failed)

        assert expiry == CREATED + timedelta(days=3)

    @pytest.mark.parametrize("status", [JobStatus.QUEUED, JobStatus.ACTIVE])
    def test_terminal_expiry_rejects_live_status(self, policy: TTLPolicy, status: JobStatus):
        """Test only terminal states have a retention deadline."""
        with pytest.raises(ValueError):
            policy.terminal_expiry(status, CREATED, CREATED)

    def test_hard_cap_cutoff(self, policy: TTLPolicy):
        """Test the creation cutoff is three days before now."""
        now = CREATED + timedelta(days=5)

        assert policy.hard_cap_cutoff(now) == CREATED + timedelta(days=2)

    def test_describe_job(self, policy: TTLPolicy):
        """Test TTL details of a record."""
        record = JobRecord(
            id="job-1",
            queue_name=QueueName.BULK_UPLOAD_POLICIES,
            organization_id="org-a",
            payload=[{}],
            created_at=CREATED,
            ttl_expires_at=policy.initial_expiry(CREATED),
        )

        info = policy.describe_job(record, CREATED + timedelta(hours=1, minutes=30))

        assert info.total_hours == 72
        assert info.remaining_hours == 70
        assert info.expires_at == CREATED + timedelta(days=3)
        assert info.is_expired is False

        expired = policy.describe_job(record, CREATED + timedelta(days=4))
        assert expired.remaining_hours == 0
        assert expired.is_expired is True

    def test_summary(self, policy: TTLPolicy):
        """Test the summary used by the cleanup response."""
        summary = policy.summary().model_dump(by_alias=True)

        assert summary == {
            "jobDataTtlDays": 3,
            "completedJobCleanupMinutes": 1,
            "failedJobCleanupMinutes": 5,
        }

    def test_describe(self, policy: TTLPolicy):
        """Test the full configuration in several units."""
        config = policy.describe().model_dump(by_alias=True)

        ttl = config["ttlConfiguration"]
        assert ttl["jobDataTtl"]["days"] == 3
        assert ttl["jobDataTtl"]["milliseconds"] == 3 * 24 * 60 * 60 * 1000
        assert ttl["completedJobCleanup"]["minutes"] == 1
        assert ttl["failedJobCleanup"]["seconds"] == 300
        assert ttl["cleanupInterval"]["hours"] == 1
        assert config["features"]["manualCleanup"] is True
        assert "3 days" in config["description"]["jobDataTtl"]
        assert "60 minutes" in config["description"]["periodicCleanup"]
