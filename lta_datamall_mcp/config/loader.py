"""Configuration file loading and validation.

Loads an optional YAML configuration file, expands ``${ENV_VAR}``
placeholders, applies well-known environment overrides and validates the
result against the Pydantic models defined in :mod:`schema`.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from lta_datamall_mcp.config.schema import DatamallConfig
from lta_datamall_mcp.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})

# Config file search order (first match wins)
_CONFIG_SEARCH_ORDER = ("config.yaml", "config.yml")

CONFIG_ENV_VAR = "LTA_MCP_CONFIG"

# ${VAR_NAME} placeholders in string values
_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

# Environment variable → config location.  The environment wins over the file.
_ENV_OVERRIDES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("LTA_API_KEY", ("upstream", "api_key")),
    ("HOST", ("server", "host")),
    ("PORT", ("server", "port")),
    ("ANALYTICS_FILE", ("analytics", "local_file")),
    ("FIREBASE_DATABASE_URL", ("analytics", "remote", "url")),
    ("FIREBASE_AUTH_TOKEN", ("analytics", "remote", "auth_token")),
    ("ANALYTICS_IMPORT_TOKEN", ("analytics", "import_token")),
)


def find_config_file() -> Optional[str]:
    """Locate a config file: ``LTA_MCP_CONFIG`` first, then ``config.yaml``/``config.yml`` in CWD.

    Returns ``None`` when there is none; the server then runs on defaults
    plus environment overrides.
    """
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return from_env
    for name in _CONFIG_SEARCH_ORDER:
        candidate = os.path.join(os.getcwd(), name)
        if os.path.isfile(candidate):
            return candidate
    return None


def expand_env_vars(value: Any) -> Any:
    """Recursively replace ``${VAR}`` placeholders with environment values.

    Unset variables keep their placeholder; the schema then treats such a
    value as unset.
    """
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except Exception as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _apply_env_overrides(raw_data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy well-known environment variables into *raw_data*."""
    for env_name, location in _ENV_OVERRIDES:
        value = os.environ.get(env_name)
        if not value:
            continue
        node = raw_data
        for key in location[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[location[-1]] = value
        logger.debug("Config value %s taken from $%s.", ".".join(location), env_name)
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


# ── Public API ───────────────────────────────────────────────────────────


def load_config(cfg_fpath: Optional[str] = None) -> DatamallConfig:
    """Load, expand, validate and return the server configuration.

    Steps:
        1. Read YAML file (skipped when *cfg_fpath* is ``None``)
        2. Expand ``${VAR}`` environment variable references
        3. Apply environment overrides (``LTA_API_KEY``, ``PORT``, ...)
        4. Validate against :class:`DatamallConfig` (Pydantic)

    Raises:
        ConfigurationError: On a missing file, I/O or parse errors, or
            validation failures (all errors reported at once).
    """
    raw_data: Dict[str, Any] = {}
    if cfg_fpath is not None:
        logger.debug("Loading configuration file: %s", cfg_fpath)
        if not os.path.exists(cfg_fpath):
            raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")
        raw_data = _read_config_file(cfg_fpath)
        raw_data = expand_env_vars(raw_data)
    else:
        logger.debug("No configuration file; using defaults and environment.")

    raw_data = _apply_env_overrides(raw_data)

    try:
        config = DatamallConfig.model_validate(raw_data)
    except ValidationError as exc:
        error_summary = _format_validation_errors(exc)
        raise ConfigurationError(
            f"Configuration validation failed ({len(exc.errors())} error(s)):\n" f"{error_summary}"
        ) from exc

    logger.info(
        "Configuration loaded (v%s, source=%s). Default API key %s, remote analytics store %s.",
        config.version,
        cfg_fpath or "environment",
        "configured" if config.upstream.api_key else "not configured",
        "enabled" if config.analytics.remote.usable else "disabled",
    )
    return config
