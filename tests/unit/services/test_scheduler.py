"""Unit tests for the background jobs and the Scheduler wrapper."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rowguard.services.policy.store import PolicyStore
from rowguard.services.scheduler import Scheduler, run_audit_flush, run_policy_diagnostics

# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class TestRunAuditFlush:
    @pytest.mark.asyncio
    async def test_returns_flushed_count(self):
        with patch("rowguard.services.scheduler.audit_sink") as mock_sink:
            mock_sink.flush = AsyncMock(return_value=7)
            assert await run_audit_flush() == 7

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self):
        with (
            patch("rowguard.services.scheduler.audit_sink") as mock_sink,
            patch("rowguard.services.scheduler.logger") as mock_logger,
        ):
            mock_sink.flush = AsyncMock(side_effect=RuntimeError("boom"))
            assert await run_audit_flush() == 0

        mock_logger.exception.assert_called_once()


class TestRunPolicyDiagnostics:
    @pytest.mark.asyncio
    async def test_reports_findings_for_live_registry(self):
        store = PolicyStore()
        store.load_all(
            [
                {
                    "resourceType": "contact_leads",
                    "operation": "read",
                    "name": "contact_select_admin",
                    "ruleKind": "adminOnly",
                }
            ]
        )

        with patch("rowguard.services.scheduler.policy_store", store):
            report = await run_policy_diagnostics()

        assert report["version"] == 1
        assert [f["operation"] for f in report["findings"]] == ["create", "update", "delete"]

    @pytest.mark.asyncio
    async def test_master_policy_is_clean(self, master_store):
        with patch("rowguard.services.scheduler.policy_store", master_store):
            report = await run_policy_diagnostics()
        assert report["findings"] == []


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TestScheduler:
    def test_disabled_by_setting(self):
        scheduler = Scheduler()
        with patch("rowguard.services.scheduler.settings") as mock_settings:
            mock_settings.scheduler_enabled = False
            scheduler.start()
        assert not scheduler.running

    def test_start_registers_jobs(self):
        scheduler = Scheduler()
        with (
            patch("rowguard.services.scheduler.settings") as mock_settings,
            patch("rowguard.services.scheduler.AsyncIOScheduler") as mock_cls,
        ):
            mock_settings.scheduler_enabled = True
            mock_settings.audit_flush_interval_seconds = 5
            mock_settings.diagnostics_hour = 6
            scheduler.start()

        instance = mock_cls.return_value
        job_ids = [call.kwargs["id"] for call in instance.add_job.call_args_list]
        assert job_ids == ["audit_flush", "policy_diagnostics"]
        instance.start.assert_called_once()
        assert scheduler.running

    def test_stop(self):
        scheduler = Scheduler()
        scheduler._scheduler = MagicMock()
        inner = scheduler._scheduler

        scheduler.stop()

        inner.shutdown.assert_called_once_with(wait=False)
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_trigger_now(self):
        scheduler = Scheduler()
        with patch("rowguard.services.scheduler.run_audit_flush", new_callable=AsyncMock) as job:
            job.return_value = 3
            assert await scheduler.trigger_now("audit_flush") == 3
        assert await scheduler.trigger_now("unknown") is None
