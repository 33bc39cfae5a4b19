"""Tool invocation: validate, record, call upstream, map the outcome.

The dispatcher is a pure pass-through.  Every invocation issues exactly one
upstream ``GET``; nothing is retried or cached and the upstream body is
returned unchanged apart from pretty-printing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import httpx
from mcp import types as mcp_types

from lta_datamall_mcp.constants import DATAMALL_BASE_URL, UPSTREAM_ERROR_PREFIX, UPSTREAM_TIMEOUT
from lta_datamall_mcp.errors import (
    ConfigurationError,
    InvalidParameterError,
    UpstreamUnreachableError,
)
from lta_datamall_mcp.tools.registry import ToolDefinition, ToolRegistry, default_registry

if TYPE_CHECKING:
    from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Uniform result envelope for a tool invocation.

    ``is_error`` is set when upstream answered with an error; the
    invocation itself still succeeded.
    """

    content: List[mcp_types.TextContent] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str, *, is_error: bool = False) -> "ToolResult":
        return cls(content=[mcp_types.TextContent(type="text", text=text)], is_error=is_error)

    @property
    def text(self) -> str:
        """All text parts joined together."""
        return "".join(part.text for part in self.content)

    def to_call_tool_result(self) -> mcp_types.CallToolResult:
        return mcp_types.CallToolResult(content=list(self.content), isError=self.is_error)


class ToolDispatcher:
    """Executes tools from a :class:`ToolRegistry` against the DataMall API.

    Parameters
    ----------
    registry:
        Catalog used to resolve and validate tool calls.
    analytics:
        Aggregator notified once per validated invocation (optional).
    base_url:
        Upstream root URL; endpoint templates are relative to it.
    timeout:
        Upstream timeout in seconds.  Expiry surfaces as
        :class:`UpstreamUnreachableError`.
    client:
        Pre-built ``httpx.AsyncClient`` (tests inject one with a mock
        transport).  When omitted a client is created lazily.
    """

    def __init__(
        self,
        registry: ToolRegistry = default_registry,
        analytics: Optional["AnalyticsAggregator"] = None,
        *,
        base_url: str = DATAMALL_BASE_URL,
        timeout: float = UPSTREAM_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._registry = registry
        self._analytics = analytics
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ── lifecycle ───────────────────────────────────────────────────

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── public API ──────────────────────────────────────────────────

    async def invoke(
        self,
        tool_name: str,
        parameters: Optional[Mapping[str, Any]],
        credential: Optional[str],
        *,
        origin_address: Optional[str] = None,
        client_descriptor: Optional[str] = None,
    ) -> ToolResult:
        """Run *tool_name* with *parameters* using *credential* as AccountKey.

        Raises:
            UnknownToolError: *tool_name* is not registered.
            ConfigurationError: no credential is available.
            InvalidParameterError: a parameter failed validation.
            UpstreamUnreachableError: upstream could not be reached.

        All of the above are raised before any upstream traffic except the
        last.  An upstream error response is returned as a result with
        ``is_error=True``.
        """
        definition = self._registry.describe(tool_name)
        if not credential:
            raise ConfigurationError(
                "No LTA API key available. Provide one via ?apiKey= or set LTA_API_KEY."
            )
        query = self.build_query(definition, parameters or {})

        if self._analytics is not None:
            self._analytics.record_tool_call(tool_name, origin_address, client_descriptor)

        return await self._get(definition, query, credential)

    @staticmethod
    def build_query(definition: ToolDefinition, parameters: Mapping[str, Any]) -> Dict[str, str]:
        """Validate *parameters* against *definition* and map them to query arguments."""
        declared = {p.name for p in definition.parameters}
        ignored = sorted(k for k in parameters if k not in declared)
        if ignored:
            logger.debug("Ignoring undeclared parameter(s) for '%s': %s", definition.name.value, ignored)

        query: Dict[str, str] = {}
        for spec in definition.parameters:
            value = parameters.get(spec.name)
            if value is None or value == "":
                if spec.required:
                    reason = "is required" if value is None else "must not be empty"
                    raise InvalidParameterError(spec.name, reason)
                continue
            if not spec.accepts_type(value):
                raise InvalidParameterError(
                    spec.name, f"expected {spec.type}, got {type(value).__name__}"
                )
            if spec.enum is not None and value not in spec.enum:
                raise InvalidParameterError(
                    spec.name, f"'{value}' is not one of {', '.join(spec.enum)}"
                )
            query[spec.query_name] = str(value)
        return query

    # ── internals ───────────────────────────────────────────────────

    async def _get(
        self, definition: ToolDefinition, query: Dict[str, str], credential: str
    ) -> ToolResult:
        url = f"{self._base_url}/{definition.endpoint}"
        headers = {"AccountKey": credential, "accept": "application/json"}
        client = self._ensure_client()

        logger.debug("Calling upstream for '%s': %s params=%s", definition.name.value, url, query)
        try:
            response = await client.get(url, params=query or None, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("Upstream unreachable for '%s': %s", definition.name.value, exc)
            raise UpstreamUnreachableError(str(exc) or type(exc).__name__, url=url, orig_exc=exc) from exc

        if response.is_success:
            return ToolResult.from_text(_render_body(response))

        message = _upstream_message(response)
        logger.info(
            "Upstream reported error for '%s' (HTTP %d): %s",
            definition.name.value,
            response.status_code,
            message,
        )
        return ToolResult.from_text(f"{UPSTREAM_ERROR_PREFIX}: {message}", is_error=True)


def _render_body(response: httpx.Response) -> str:
    try:
        return json.dumps(response.json(), indent=2)
    except ValueError:
        return response.text


def _upstream_message(response: httpx.Response) -> str:
    """The upstream ``Message`` field, or a generic status message."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("Message") or body.get("message")
        if isinstance(message, str) and message:
            return message
    return f"Request failed with status code {response.status_code}"
