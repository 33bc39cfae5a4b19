"""Tests for the runtime service lifecycle and the CLI parser."""

from __future__ import annotations

from typing import Any

import pytest

from lta_datamall_mcp.cli import _build_parser
from lta_datamall_mcp.config.schema import DatamallConfig
from lta_datamall_mcp.errors import ConfigurationError
from lta_datamall_mcp.runtime.models import ServiceState, is_valid_transition
from lta_datamall_mcp.runtime.service import DatamallService, build_persistence
from lta_datamall_mcp.server.stdio import run_stdio


def _config(tmp_path: Any, **upstream: Any) -> DatamallConfig:
    return DatamallConfig.model_validate(
        {"upstream": upstream, "analytics": {"local_file": str(tmp_path / "a.json")}}
    )


class TestStateMachine:
    def test_transitions(self) -> None:
        assert is_valid_transition(ServiceState.PENDING, ServiceState.STARTING)
        assert is_valid_transition(ServiceState.RUNNING, ServiceState.STOPPING)
        assert not is_valid_transition(ServiceState.PENDING, ServiceState.RUNNING)
        assert not is_valid_transition(ServiceState.STOPPED, ServiceState.STARTING)


@pytest.mark.asyncio
class TestDatamallService:
    async def test_start_and_stop(self, tmp_path: Any) -> None:
        service = DatamallService(_config(tmp_path, api_key="K"))
        assert service.state is ServiceState.PENDING
        await service.start()
        assert service.is_running
        status = service.get_status()
        assert status.default_key_configured
        assert status.active_sessions == 0
        service.analytics.record_request("GET", "/", None, None)
        await service.stop()
        assert service.state is ServiceState.STOPPED
        assert (tmp_path / "a.json").exists()
        # Stopping twice is harmless.
        await service.stop()

    async def test_stop_before_start_is_noop(self, tmp_path: Any) -> None:
        service = DatamallService(_config(tmp_path))
        await service.stop()
        assert service.state is ServiceState.PENDING

    async def test_stdio_requires_default_key(self, tmp_path: Any) -> None:
        with pytest.raises(ConfigurationError):
            await run_stdio(_config(tmp_path))


class TestBuildPersistence:
    def test_local_only_by_default(self, tmp_path: Any) -> None:
        assert not build_persistence(_config(tmp_path).analytics).remote_enabled

    def test_remote_when_usable(self, tmp_path: Any) -> None:
        cfg = DatamallConfig.model_validate(
            {"analytics": {"remote": {"enabled": True, "url": "https://db.example.test"}}}
        )
        assert build_persistence(cfg.analytics).remote_enabled

    def test_enabled_without_url_stays_local(self) -> None:
        cfg = DatamallConfig.model_validate({"analytics": {"remote": {"enabled": True}}})
        assert not build_persistence(cfg.analytics).remote_enabled

    def test_url_alone_enables_remote(self) -> None:
        cfg = DatamallConfig.model_validate({"analytics": {"remote": {"url": "https://db.example.test"}}})
        assert build_persistence(cfg.analytics).remote_enabled

    def test_explicit_disable_wins_over_url(self) -> None:
        cfg = DatamallConfig.model_validate(
            {"analytics": {"remote": {"enabled": False, "url": "https://db.example.test"}}}
        )
        assert not build_persistence(cfg.analytics).remote_enabled


class TestCliParser:
    def test_server_flags(self) -> None:
        args = _build_parser().parse_args(["server", "--port", "9001", "--log-level", "debug"])
        assert args.command == "server"
        assert args.port == 9001
        assert args.host is None
        assert args.log_level == "debug"

    def test_stdio(self) -> None:
        args = _build_parser().parse_args(["stdio", "--config", "x.yaml"])
        assert args.command == "stdio"
        assert args.config == "x.yaml"
