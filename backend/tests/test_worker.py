"""Tests for the Temporal worker entrypoint: registration, connection and lifecycle."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from temporalio.contrib.pydantic import pydantic_data_converter

from concierge.activities.agent_runner import run_agent_job
from concierge.worker import (
    ACTIVITIES,
    WORKFLOWS,
    create_temporal_client,
    purge_search_cache_forever,
    run_worker,
)
from concierge.workflows.agent_job import AgentJobWorkflow


class TestRegistration:
    """The worker hosts exactly one workflow and one activity."""

    def test_activity_registered(self) -> None:
        assert [run_agent_job] == ACTIVITIES

    def test_workflow_registered(self) -> None:
        assert [AgentJobWorkflow] == WORKFLOWS


class TestCreateTemporalClient:
    """Verify Temporal client creation with local and cloud configs."""

    @pytest.mark.asyncio
    @patch("concierge.worker.Client")
    async def test_local_connection_no_tls(self, mock_client_cls: MagicMock) -> None:
        """Local Temporal (no API key) should connect without TLS."""
        mock_client_cls.connect = AsyncMock(return_value=MagicMock())

        with patch("concierge.worker.settings") as mock_settings:
            mock_settings.temporal_address = "localhost:7233"
            mock_settings.temporal_namespace = "default"
            mock_settings.temporal_api_key = None

            await create_temporal_client()

        mock_client_cls.connect.assert_called_once_with(
            target_host="localhost:7233",
            namespace="default",
            data_converter=pydantic_data_converter,
        )

    @pytest.mark.asyncio
    @patch("concierge.worker.Client")
    async def test_cloud_connection_with_tls(self, mock_client_cls: MagicMock) -> None:
        """Temporal Cloud (API key set) should connect with TLS + API key."""
        mock_client_cls.connect = AsyncMock(return_value=MagicMock())

        with patch("concierge.worker.settings") as mock_settings:
            mock_settings.temporal_address = "concierge.tmprl.cloud:7233"
            mock_settings.temporal_namespace = "concierge-prod"
            mock_settings.temporal_api_key = "secret-key-123"

            await create_temporal_client()

        mock_client_cls.connect.assert_called_once_with(
            target_host="concierge.tmprl.cloud:7233",
            namespace="concierge-prod",
            tls=True,
            api_key="secret-key-123",
            data_converter=pydantic_data_converter,
        )


class TestPurgeLoop:
    @pytest.mark.asyncio
    async def test_purges_until_cancelled(self) -> None:
        cache = MagicMock()
        cache.purge_expired = AsyncMock(return_value=0)
        stamp = datetime(2026, 3, 1, tzinfo=UTC)

        task = asyncio.create_task(purge_search_cache_forever(cache, 0.01, lambda: stamp))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cache.purge_expired.await_count >= 1
        cache.purge_expired.assert_awaited_with(stamp)

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_loop(self) -> None:
        cache = MagicMock()
        cache.purge_expired = AsyncMock(side_effect=[RuntimeError("db down"), 0, 0, 0, 0, 0])

        task = asyncio.create_task(purge_search_cache_forever(cache, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cache.purge_expired.await_count >= 2


class TestRunWorker:
    """Verify the worker run lifecycle."""

    @pytest.mark.asyncio
    @patch("concierge.worker.build_services")
    @patch("concierge.worker.Worker")
    @patch("concierge.worker.create_temporal_client")
    async def test_worker_created_and_services_closed(
        self,
        mock_create_client: AsyncMock,
        mock_worker_cls: MagicMock,
        mock_build_services: MagicMock,
    ) -> None:
        """Worker gets the queue and registrations; services are closed on exit."""
        mock_client = MagicMock()
        mock_create_client.return_value = mock_client
        mock_worker = MagicMock()
        mock_worker.run = AsyncMock()
        mock_worker_cls.return_value = mock_worker
        services = MagicMock()
        services.aclose = AsyncMock()
        services.runner.wait_for_background = AsyncMock()
        mock_build_services.return_value = services

        with (
            patch("concierge.worker.settings") as mock_settings,
            patch("concierge.worker.agent_runner.install_runner") as mock_install,
        ):
            mock_settings.temporal_task_queue = "concierge-test"
            mock_settings.worker_max_concurrent_jobs = 4
            mock_settings.search_cache_purge_interval_seconds = 3600

            await run_worker()

        mock_worker_cls.assert_called_once_with(
            mock_client,
            task_queue="concierge-test",
            workflows=WORKFLOWS,
            activities=ACTIVITIES,
            max_concurrent_activities=4,
        )
        mock_worker.run.assert_awaited_once()
        mock_install.assert_called_once_with(services.runner)
        services.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("concierge.worker.create_temporal_client")
    async def test_connection_failure_logs_and_raises(
        self,
        mock_create_client: AsyncMock,
    ) -> None:
        """Connection failures should be logged with structured context, then re-raised."""
        mock_create_client.side_effect = ConnectionError("Temporal unreachable")

        with patch("concierge.worker.settings") as mock_settings:
            mock_settings.temporal_address = "bad-host:7233"
            mock_settings.temporal_namespace = "default"
            mock_settings.temporal_task_queue = "concierge-test"

            with pytest.raises(ConnectionError, match="Temporal unreachable"):
                await run_worker()


class TestMain:
    """The console entrypoint wraps run_worker with logging and exit codes."""

    @patch("concierge.worker.run_worker")
    @patch("concierge.worker.asyncio.run")
    @patch("concierge.worker.configure_logging")
    def test_configures_logging_then_runs(
        self, mock_configure: MagicMock, mock_run: MagicMock, mock_worker: MagicMock
    ) -> None:
        from concierge.worker import main

        main()
        mock_configure.assert_called_once()
        mock_run.assert_called_once()

    @patch("concierge.worker.run_worker")
    @patch("concierge.worker.asyncio.run", side_effect=KeyboardInterrupt)
    @patch("concierge.worker.configure_logging")
    def test_interrupt_exits_quietly(
        self, mock_configure: MagicMock, mock_run: MagicMock, mock_worker: MagicMock
    ) -> None:
        from concierge.worker import main

        main()

    @patch("concierge.worker.sys")
    @patch("concierge.worker.run_worker")
    @patch("concierge.worker.asyncio.run", side_effect=RuntimeError("fatal"))
    @patch("concierge.worker.configure_logging")
    def test_fatal_error_exits_with_code_1(
        self,
        mock_configure: MagicMock,
        mock_run: MagicMock,
        mock_worker: MagicMock,
        mock_sys: MagicMock,
    ) -> None:
        from concierge.worker import main

        main()
        mock_sys.exit.assert_called_once_with(1)
