"""Tests for the MCP protocol handlers."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx
import pytest
from mcp import types as mcp_types
from mcp.shared.exceptions import McpError

from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator
from lta_datamall_mcp.server.handlers import build_mcp_server
from lta_datamall_mcp.server.session.models import MCPSession
from lta_datamall_mcp.tools.dispatcher import ToolDispatcher
from lta_datamall_mcp.tools.registry import default_registry


def _dispatcher(handler: Any) -> tuple[ToolDispatcher, AnalyticsAggregator]:
    analytics = AnalyticsAggregator()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return (
        ToolDispatcher(default_registry, analytics, base_url="https://lta.test", client=client),
        analytics,
    )


async def _call(
    server: Any, name: str, arguments: Optional[Dict[str, Any]] = None
) -> mcp_types.CallToolResult:
    req = mcp_types.CallToolRequest(
        method="tools/call",
        params=mcp_types.CallToolRequestParams(name=name, arguments=arguments),
    )
    result = await server.request_handlers[mcp_types.CallToolRequest](req)
    return result.root


@pytest.mark.asyncio
class TestListTools:
    async def test_lists_catalog(self) -> None:
        dispatcher, _ = _dispatcher(lambda r: httpx.Response(200, json={}))
        server = build_mcp_server(dispatcher, credential="K")
        handler = server.request_handlers[mcp_types.ListToolsRequest]
        result = await handler(mcp_types.ListToolsRequest(method="tools/list"))
        assert [t.name for t in result.root.tools] == default_registry.names()


@pytest.mark.asyncio
class TestCallTool:
    async def test_success(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": [{"Line": "NSL"}]})

        dispatcher, analytics = _dispatcher(handler)
        server = build_mcp_server(
            dispatcher, credential="SESSION-KEY", origin_address="7.7.7.7", client_descriptor="ua"
        )
        result = await _call(server, "station_crowding", {"trainLine": "NSL"})
        assert not result.isError
        assert "NSL" in result.content[0].text
        assert seen[0].headers["AccountKey"] == "SESSION-KEY"
        rec = analytics.snapshot().recent_tool_calls[-1]
        assert (rec.tool, rec.client_ip, rec.user_agent) == ("station_crowding", "7.7.7.7", "ua")

    async def test_upstream_error_is_error_result(self) -> None:
        dispatcher, _ = _dispatcher(lambda r: httpx.Response(401, json={"Message": "Invalid AccountKey"}))
        server = build_mcp_server(dispatcher, credential="K")
        result = await _call(server, "train_alerts")
        assert result.isError
        assert result.content[0].text == "LTA API error: Invalid AccountKey"

    async def test_unknown_tool_is_method_not_found(self) -> None:
        dispatcher, _ = _dispatcher(lambda r: httpx.Response(200, json={}))
        server = build_mcp_server(dispatcher, credential="K")
        with pytest.raises(McpError) as exc_info:
            await _call(server, "taxi_availability")
        assert exc_info.value.error.code == mcp_types.METHOD_NOT_FOUND

    async def test_invalid_parameter_is_invalid_params(self) -> None:
        dispatcher, analytics = _dispatcher(lambda r: httpx.Response(200, json={}))
        server = build_mcp_server(dispatcher, credential="K")
        with pytest.raises(McpError) as exc_info:
            await _call(server, "station_crowding", {"trainLine": "ZZZ"})
        assert exc_info.value.error.code == mcp_types.INVALID_PARAMS
        assert exc_info.value.error.data["parameter"] == "trainLine"
        assert analytics.snapshot().total_tool_calls == 0

    async def test_unreachable_is_internal_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        dispatcher, _ = _dispatcher(refuse)
        server = build_mcp_server(dispatcher, credential="K")
        with pytest.raises(McpError) as exc_info:
            await _call(server, "traffic_incidents")
        assert exc_info.value.error.code == mcp_types.INTERNAL_ERROR

    async def test_missing_credential_is_internal_error(self) -> None:
        dispatcher, _ = _dispatcher(lambda r: httpx.Response(200, json={}))
        server = build_mcp_server(dispatcher, credential=None)
        with pytest.raises(McpError) as exc_info:
            await _call(server, "train_alerts")
        assert "configuration" in exc_info.value.error.message.lower()

    async def test_call_tracked_on_session(self) -> None:
        release = asyncio.Event()
        observed = {}

        async def slow(request: httpx.Request) -> httpx.Response:
            observed["inflight"] = session.inflight_calls
            await release.wait()
            return httpx.Response(200, json={})

        session = MCPSession(id="s1", credential="K")
        dispatcher, _ = _dispatcher(slow)
        server = build_mcp_server(dispatcher, credential="K", session=session)
        task = asyncio.create_task(_call(server, "train_alerts"))
        for _ in range(20):
            await asyncio.sleep(0)
            if "inflight" in observed:
                break
        assert observed["inflight"] == 1
        release.set()
        await task
        assert session.inflight_calls == 0
