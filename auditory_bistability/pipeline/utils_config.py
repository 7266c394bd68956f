# auditory_bistability/pipeline/utils_config.py
from __future__ import annotations

from dataclasses import is_dataclass
from typing import Any, Mapping, Optional

from .errors import UnknownSettingsKeyError


def coalesce_not_none(*vals: Any) -> Any:
    """Return the first value that is not None (0 is valid and must be preserved)."""
    for v in vals:
        if v is not None:
            return v
    return None


def cfg_get(obj: Any, dotted: str, default: Any = None) -> Any:
    """Read a dotted path through nested dataclasses and dicts."""
    cur = obj
    for part in dotted.split("."):
        if isinstance(cur, Mapping):
            if part not in cur:
                return default
            cur = cur[part]
        elif hasattr(cur, part):
            cur = getattr(cur, part)
        else:
            return default
    return cur


def apply_dotted_overrides(
    target: Any,
    overrides: Optional[Mapping[str, Any]],
    provenance: Optional[dict] = None,
    source: str = "override",
) -> None:
    """
    Apply dotted-path overrides into nested dataclasses/dicts.

    Every path component must already exist; unknown keys raise
    ``UnknownSettingsKeyError`` naming the full path.
    """
    for path, value in (overrides or {}).items():
        parts = str(path).split(".")
        cur = target
        for i, part in enumerate(parts):
            dotted = ".".join(parts[: i + 1])
            last = i == len(parts) - 1

            if isinstance(cur, dict):
                if part not in cur:
                    raise UnknownSettingsKeyError(dotted)
                if last:
                    cur[part] = value
                else:
                    cur = cur[part]
                continue

            if not is_dataclass(cur) or not hasattr(cur, part):
                raise UnknownSettingsKeyError(dotted)
            if last:
                setattr(cur, part, value)
            else:
                cur = getattr(cur, part)

        if provenance is not None:
            provenance[str(path)] = source
