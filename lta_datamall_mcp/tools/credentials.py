"""Per-request upstream credential resolution."""

from typing import Optional


def resolve_credential(override: Optional[str], default: Optional[str]) -> Optional[str]:
    """Pick the DataMall AccountKey for a request.

    A non-empty request-supplied *override* (``?apiKey=``) wins; otherwise
    the process-wide *default* is used.  Returns ``None`` when neither is
    available; callers must then refuse to call upstream.
    """
    if override and override.strip():
        return override.strip()
    if default and default.strip():
        return default.strip()
    return None
