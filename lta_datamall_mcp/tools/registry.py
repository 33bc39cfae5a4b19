"""Static catalog of the DataMall tools.

Each :class:`ToolDefinition` maps a tool name to its parameter schema and
the upstream endpoint it queries.  The catalog is built once at import
time and never mutated, so concurrent readers need no synchronisation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from mcp import types as mcp_types

from lta_datamall_mcp.errors import UnknownToolError


class ToolName(str, Enum):
    """Every tool the server exposes."""

    BUS_ARRIVAL = "bus_arrival"
    STATION_CROWDING = "station_crowding"
    TRAIN_ALERTS = "train_alerts"
    CARPARK_AVAILABILITY = "carpark_availability"
    TRAVEL_TIMES = "travel_times"
    TRAFFIC_INCIDENTS = "traffic_incidents"
    STATION_CROWD_FORECAST = "station_crowd_forecast"


TRAIN_LINES: Tuple[str, ...] = (
    "CCL",
    "CEL",
    "CGL",
    "DTL",
    "EWL",
    "NEL",
    "NSL",
    "BPL",
    "SLRT",
    "PLRT",
    "TEL",
)

# JSON-schema type name → accepted Python types
_TYPE_CHECKS: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
}


@dataclass(frozen=True)
class ParameterSpec:
    """A single tool parameter and the upstream query argument it maps to."""

    name: str
    query_name: str
    description: str
    type: str = "string"
    required: bool = False
    enum: Optional[Tuple[str, ...]] = None

    def accepts_type(self, value: Any) -> bool:
        """Return ``True`` if *value* matches the declared JSON-schema type."""
        if isinstance(value, bool) and self.type in ("integer", "number"):
            return False
        return isinstance(value, _TYPE_CHECKS.get(self.type, (object,)))

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    """Immutable description of one tool."""

    name: ToolName
    description: str
    endpoint: str
    """Path relative to the upstream base URL."""

    parameters: Tuple[ParameterSpec, ...] = field(default_factory=tuple)

    def input_schema(self) -> Dict[str, Any]:
        """JSON schema advertised in ``tools/list``."""
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.parameters},
        }
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return schema

    def to_mcp_tool(self) -> mcp_types.Tool:
        return mcp_types.Tool(
            name=self.name.value,
            description=self.description,
            inputSchema=self.input_schema(),
        )


_TRAIN_LINE_PARAM = ParameterSpec(
    name="trainLine",
    query_name="TrainLine",
    description="Code of train network line (" + ", ".join(TRAIN_LINES) + ")",
    required=True,
    enum=TRAIN_LINES,
)

TOOL_DEFINITIONS: Tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name=ToolName.BUS_ARRIVAL,
        description=(
            "Get real-time bus arrival information for a specific bus stop and "
            "optionally a specific service number. Returns estimated arrival times, "
            "bus locations, and crowding levels."
        ),
        endpoint="v3/BusArrival",
        parameters=(
            ParameterSpec(
                name="busStopCode",
                query_name="BusStopCode",
                description="The unique 5-digit bus stop code",
                required=True,
            ),
            ParameterSpec(
                name="serviceNo",
                query_name="ServiceNo",
                description="Optional bus service number to filter results",
            ),
        ),
    ),
    ToolDefinition(
        name=ToolName.STATION_CROWDING,
        description=(
            "Get real-time MRT/LRT station crowdedness level for a particular train "
            "network line. Updates every 10 minutes."
        ),
        endpoint="PCDRealTime",
        parameters=(_TRAIN_LINE_PARAM,),
    ),
    ToolDefinition(
        name=ToolName.TRAIN_ALERTS,
        description=(
            "Get real-time train service alerts including service disruptions and "
            "shuttle services. Updates when there are changes."
        ),
        endpoint="TrainServiceAlerts",
    ),
    ToolDefinition(
        name=ToolName.CARPARK_AVAILABILITY,
        description=(
            "Get real-time availability of parking lots for HDB, LTA, and URA "
            "carparks. Updates every minute."
        ),
        endpoint="CarParkAvailabilityv2",
    ),
    ToolDefinition(
        name=ToolName.TRAVEL_TIMES,
        description="Get estimated travel times on expressway segments. Updates every 5 minutes.",
        endpoint="EstTravelTimes",
    ),
    ToolDefinition(
        name=ToolName.TRAFFIC_INCIDENTS,
        description=(
            "Get current road incidents including accidents, roadworks, and heavy "
            "traffic. Updates every 2 minutes."
        ),
        endpoint="TrafficIncidents",
    ),
    ToolDefinition(
        name=ToolName.STATION_CROWD_FORECAST,
        description="Get forecasted MRT/LRT station crowdedness levels in 30-minute intervals.",
        endpoint="PCDForecast",
        parameters=(_TRAIN_LINE_PARAM,),
    ),
)


class ToolRegistry:
    """Read-only lookup over a fixed tuple of tool definitions."""

    def __init__(self, definitions: Tuple[ToolDefinition, ...] = TOOL_DEFINITIONS) -> None:
        self._definitions = tuple(definitions)
        self._by_name: Mapping[str, ToolDefinition] = {d.name.value: d for d in self._definitions}
        if len(self._by_name) != len(self._definitions):
            raise ValueError("Tool names must be unique")

    def list_tools(self) -> List[ToolDefinition]:
        """All definitions in declaration order."""
        return list(self._definitions)

    def names(self) -> List[str]:
        return [d.name.value for d in self._definitions]

    def describe(self, name: str) -> ToolDefinition:
        """Return the definition for *name*.

        Raises :class:`UnknownToolError` if no such tool is registered.
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def to_mcp_tools(self) -> List[mcp_types.Tool]:
        return [d.to_mcp_tool() for d in self._definitions]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._definitions)


# Shared default catalog
default_registry = ToolRegistry()
