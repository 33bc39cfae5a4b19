"""Tests for tool dispatch against a mocked DataMall upstream."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator
from lta_datamall_mcp.errors import (
    ConfigurationError,
    InvalidParameterError,
    UnknownToolError,
    UpstreamUnreachableError,
)
from lta_datamall_mcp.tools.credentials import resolve_credential
from lta_datamall_mcp.tools.dispatcher import ToolDispatcher
from lta_datamall_mcp.tools.registry import default_registry

BASE_URL = "https://datamall.test/ltaodataservice"


def _make_dispatcher(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[ToolDispatcher, AnalyticsAggregator, List[httpx.Request]]:
    seen: List[httpx.Request] = []

    def _recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    analytics = AnalyticsAggregator()
    client = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
    dispatcher = ToolDispatcher(default_registry, analytics, base_url=BASE_URL, client=client)
    return dispatcher, analytics, seen


def _json(status: int, body: Dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, json=body)


# ════════════════════════════════════════════════════════════════════════
#  Credential resolution
# ════════════════════════════════════════════════════════════════════════


class TestResolveCredential:
    def test_override_wins(self) -> None:
        assert resolve_credential("mine", "default") == "mine"

    def test_falls_back_to_default(self) -> None:
        assert resolve_credential(None, "default") == "default"
        assert resolve_credential("", "default") == "default"
        assert resolve_credential("   ", "default") == "default"

    def test_none_available(self) -> None:
        assert resolve_credential(None, None) is None
        assert resolve_credential("", "") is None


# ════════════════════════════════════════════════════════════════════════
#  Query building
# ════════════════════════════════════════════════════════════════════════


class TestBuildQuery:
    def test_maps_names_to_upstream_arguments(self) -> None:
        d = default_registry.describe("bus_arrival")
        q = ToolDispatcher.build_query(d, {"busStopCode": "83139", "serviceNo": "15"})
        assert q == {"BusStopCode": "83139", "ServiceNo": "15"}

    def test_optional_omitted(self) -> None:
        d = default_registry.describe("bus_arrival")
        assert ToolDispatcher.build_query(d, {"busStopCode": "83139"}) == {"BusStopCode": "83139"}

    def test_empty_optional_treated_as_omitted(self) -> None:
        d = default_registry.describe("bus_arrival")
        q = ToolDispatcher.build_query(d, {"busStopCode": "83139", "serviceNo": ""})
        assert q == {"BusStopCode": "83139"}

    def test_missing_required(self) -> None:
        d = default_registry.describe("bus_arrival")
        with pytest.raises(InvalidParameterError) as exc_info:
            ToolDispatcher.build_query(d, {})
        assert exc_info.value.name == "busStopCode"

    def test_empty_required(self) -> None:
        d = default_registry.describe("bus_arrival")
        with pytest.raises(InvalidParameterError):
            ToolDispatcher.build_query(d, {"busStopCode": ""})

    def test_wrong_type(self) -> None:
        d = default_registry.describe("bus_arrival")
        with pytest.raises(InvalidParameterError) as exc_info:
            ToolDispatcher.build_query(d, {"busStopCode": 83139})
        assert "expected string" in exc_info.value.reason

    def test_enum_violation(self) -> None:
        d = default_registry.describe("station_crowding")
        with pytest.raises(InvalidParameterError) as exc_info:
            ToolDispatcher.build_query(d, {"trainLine": "ZZZ"})
        assert exc_info.value.name == "trainLine"

    def test_undeclared_parameters_ignored(self) -> None:
        d = default_registry.describe("train_alerts")
        assert ToolDispatcher.build_query(d, {"foo": "bar"}) == {}


# ════════════════════════════════════════════════════════════════════════
#  invoke()
# ════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestInvoke:
    async def test_success_returns_pretty_json_and_counts(self) -> None:
        dispatcher, analytics, seen = _make_dispatcher(_json(200, {"Services": []}))
        result = await dispatcher.invoke(
            "bus_arrival",
            {"busStopCode": "83139"},
            "K",
            origin_address="10.0.0.1",
            client_descriptor="pytest",
        )
        assert not result.is_error
        assert json.loads(result.text) == {"Services": []}
        assert "Services" in result.text

        assert len(seen) == 1
        req = seen[0]
        assert str(req.url).startswith(f"{BASE_URL}/v3/BusArrival")
        assert req.url.params["BusStopCode"] == "83139"
        assert req.headers["AccountKey"] == "K"
        assert req.headers["accept"] == "application/json"

        snap = analytics.snapshot()
        assert snap.total_tool_calls == 1
        assert snap.tool_calls == {"bus_arrival": 1}
        assert snap.recent_tool_calls[-1].client_ip == "10.0.0.1"
        assert snap.recent_tool_calls[-1].user_agent == "pytest"
        await dispatcher.aclose()

    async def test_parameterless_tool_sends_no_query(self) -> None:
        dispatcher, _, seen = _make_dispatcher(_json(200, {"value": []}))
        await dispatcher.invoke("train_alerts", None, "K")
        assert seen[0].url.query == b""
        assert seen[0].url.path.endswith("/TrainServiceAlerts")

    async def test_upstream_error_is_soft_and_counted(self) -> None:
        dispatcher, analytics, _ = _make_dispatcher(_json(401, {"Message": "Invalid AccountKey"}))
        result = await dispatcher.invoke("train_alerts", {}, "bad")
        assert result.is_error
        assert result.text == "LTA API error: Invalid AccountKey"
        assert analytics.snapshot().total_tool_calls == 1

    async def test_upstream_error_without_message(self) -> None:
        dispatcher, _, _ = _make_dispatcher(lambda r: httpx.Response(503, text="down"))
        result = await dispatcher.invoke("travel_times", {}, "K")
        assert result.is_error
        assert result.text == "LTA API error: Request failed with status code 503"

    async def test_non_json_success_returned_verbatim(self) -> None:
        dispatcher, _, _ = _make_dispatcher(lambda r: httpx.Response(200, text="plain body"))
        result = await dispatcher.invoke("traffic_incidents", {}, "K")
        assert result.text == "plain body"

    async def test_invalid_parameter_makes_no_call_and_no_count(self) -> None:
        dispatcher, analytics, seen = _make_dispatcher(_json(200, {}))
        with pytest.raises(InvalidParameterError):
            await dispatcher.invoke("station_crowding", {"trainLine": "ZZZ"}, "K")
        assert seen == []
        assert analytics.snapshot().total_tool_calls == 0

    async def test_unknown_tool_makes_no_call(self) -> None:
        dispatcher, analytics, seen = _make_dispatcher(_json(200, {}))
        with pytest.raises(UnknownToolError):
            await dispatcher.invoke("taxi_availability", {}, "K")
        assert seen == []
        assert analytics.snapshot().total_tool_calls == 0

    async def test_missing_credential(self) -> None:
        dispatcher, _, seen = _make_dispatcher(_json(200, {}))
        with pytest.raises(ConfigurationError):
            await dispatcher.invoke("train_alerts", {}, None)
        assert seen == []

    async def test_unreachable_upstream(self) -> None:
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher, analytics, _ = _make_dispatcher(_refuse)
        with pytest.raises(UpstreamUnreachableError) as exc_info:
            await dispatcher.invoke("carpark_availability", {}, "K")
        assert "CarParkAvailabilityv2" in str(exc_info.value)
        # Counted: the call was dispatched even though it never landed.
        assert analytics.snapshot().total_tool_calls == 1

    async def test_timeout_is_unreachable(self) -> None:
        def _slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        dispatcher, _, _ = _make_dispatcher(_slow)
        with pytest.raises(UpstreamUnreachableError):
            await dispatcher.invoke("travel_times", {}, "K")

    async def test_tool_result_to_mcp(self) -> None:
        dispatcher, _, _ = _make_dispatcher(_json(401, {"Message": "nope"}))
        result = await dispatcher.invoke("train_alerts", {}, "K")
        mcp_result = result.to_call_tool_result()
        assert mcp_result.isError is True
        assert mcp_result.content[0].type == "text"
        assert mcp_result.content[0].text == "LTA API error: nope"
