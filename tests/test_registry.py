"""Tests for the DataMall tool catalog."""

from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from lta_datamall_mcp.errors import UnknownToolError
from lta_datamall_mcp.tools.registry import (
    TOOL_DEFINITIONS,
    TRAIN_LINES,
    ParameterSpec,
    ToolDefinition,
    ToolName,
    ToolRegistry,
    default_registry,
)


class TestToolRegistry:
    def test_lists_all_seven_tools_in_order(self) -> None:
        assert default_registry.names() == [
            "bus_arrival",
            "station_crowding",
            "train_alerts",
            "carpark_availability",
            "travel_times",
            "traffic_incidents",
            "station_crowd_forecast",
        ]
        assert len(default_registry) == 7

    def test_describe_known_tool(self) -> None:
        d = default_registry.describe("bus_arrival")
        assert d.name is ToolName.BUS_ARRIVAL
        assert d.endpoint == "v3/BusArrival"
        assert [p.query_name for p in d.parameters] == ["BusStopCode", "ServiceNo"]

    def test_describe_unknown_tool_raises(self) -> None:
        with pytest.raises(UnknownToolError) as exc_info:
            default_registry.describe("taxi_availability")
        assert exc_info.value.tool_name == "taxi_availability"

    def test_contains(self) -> None:
        assert "train_alerts" in default_registry
        assert "nope" not in default_registry

    def test_duplicate_names_rejected(self) -> None:
        d = TOOL_DEFINITIONS[0]
        with pytest.raises(ValueError):
            ToolRegistry((d, d))

    def test_list_tools_is_a_copy(self) -> None:
        tools = default_registry.list_tools()
        tools.clear()
        assert len(default_registry.list_tools()) == 7


class TestInputSchemas:
    def test_bus_arrival_schema(self) -> None:
        schema = default_registry.describe("bus_arrival").input_schema()
        assert schema["type"] == "object"
        assert set(schema["properties"]) == {"busStopCode", "serviceNo"}
        assert schema["required"] == ["busStopCode"]

    def test_train_line_enum(self) -> None:
        for name in ("station_crowding", "station_crowd_forecast"):
            schema = default_registry.describe(name).input_schema()
            assert schema["properties"]["trainLine"]["enum"] == list(TRAIN_LINES)
            assert schema["required"] == ["trainLine"]

    def test_parameterless_tools_have_no_required(self) -> None:
        for name in ("train_alerts", "carpark_availability", "travel_times", "traffic_incidents"):
            schema = default_registry.describe(name).input_schema()
            assert schema["properties"] == {}
            assert "required" not in schema

    def test_to_mcp_tools(self) -> None:
        tools = default_registry.to_mcp_tools()
        assert [t.name for t in tools] == default_registry.names()
        assert all(t.description for t in tools)
        assert tools[1].inputSchema["properties"]["trainLine"]["type"] == "string"


class TestParameterSpec:
    def test_accepts_type(self) -> None:
        s = ParameterSpec(name="x", query_name="X", description="")
        assert s.accepts_type("83139")
        assert not s.accepts_type(83139)

    def test_bool_is_not_a_number(self) -> None:
        s = ParameterSpec(name="n", query_name="N", description="", type="integer")
        assert s.accepts_type(3)
        assert not s.accepts_type(True)

    def test_definitions_are_frozen(self) -> None:
        d: ToolDefinition = default_registry.describe("train_alerts")
        with pytest.raises(FrozenInstanceError):
            d.endpoint = "Other"  # type: ignore[misc]
