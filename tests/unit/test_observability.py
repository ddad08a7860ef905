"""
Unit tests for logging context, tracing setup and database engine options.
"""

import asyncio

import pytest
import structlog

from bulkqueue.config import Settings
from bulkqueue.db.connection import engine_options
from bulkqueue.observability.logging import job_log_context
from bulkqueue.observability.tracing import build_tracer_provider


class TestJobLogContext:
    """Tests for job_log_context."""

    def test_binds_and_clears_job_fields(self):
        """Test job fields are bound only inside the block."""
        with job_log_context("job-1", "bulk-upload-mechanics", executor_id="w:0"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["job_id"] == "job-1"
            assert bound["queue"] == "bulk-upload-mechanics"
            assert bound["executor_id"] == "w:0"

        assert "job_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_concurrent_jobs_do_not_share_context(self):
        """Test each task sees only its own job id."""
        seen: dict[str, str] = {}

        async def run(job_id: str) -> None:
            with job_log_context(job_id, "bulk-upload-policies"):
                await asyncio.sleep(0.01)
                seen[job_id] = structlog.contextvars.get_contextvars()["job_id"]

        await asyncio.gather(run("a"), run("b"))

        assert seen == {"a": "a", "b": "b"}


class TestEngineOptions:
    """Tests for engine_options."""

    def test_postgres_uses_pool_settings(self):
        """Test pool sizing is applied to PostgreSQL URLs."""
        settings = Settings(database_pool_size=7, database_max_overflow=3)

        options = engine_options("postgresql+asyncpg://u:p@db:5432/queue", settings)

        assert options["pool_size"] == 7
        assert options["max_overflow"] == 3
        assert options["pool_pre_ping"] is True

    def test_sqlite_skips_pool_settings(self):
        """Test SQLite URLs get a lock timeout instead of pool sizing."""
        options = engine_options("sqlite+aiosqlite:///queue.db", Settings())

        assert "pool_size" not in options
        assert options["connect_args"] == {"timeout": 30}

    def test_echo_follows_debug_level(self):
        """Test SQL echo is enabled only at DEBUG level."""
        url = "sqlite+aiosqlite:///queue.db"

        assert engine_options(url, Settings(log_level="debug"))["echo"] is True
        assert engine_options(url, Settings(log_level="INFO"))["echo"] is False


class TestTracerProvider:
    """Tests for build_tracer_provider."""

    def test_resource_and_sampler(self):
        """Test the provider names the service and samples at the configured ratio."""
        settings = Settings(otel_enabled=False, otel_service_name="bulkqueue-test", otel_sample_ratio=0.25)

        provider = build_tracer_provider(settings)

        assert provider.resource.attributes["service.name"] == "bulkqueue-test"
        assert "0.25" in provider.sampler.get_description()
