from __future__ import annotations

import copy
import importlib
import importlib.util
import logging
import os
from dataclasses import fields, is_dataclass
from typing import Any, Dict, Mapping, Optional, Union

if importlib.util.find_spec("tomllib"):
    tomllib = importlib.import_module("tomllib")  # type: ignore
else:  # pragma: no cover
    tomllib = importlib.import_module("tomli")  # type: ignore

from .config import DEFAULT_PARAMS, BistableSettings, ModelParams, parse_quantity
from .errors import ConfigurationError, UnknownSettingsKeyError
from .utils_config import apply_dotted_overrides

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

# keys may be spelled with Greek symbols (Δt, f_τ_σ)
_SYMBOLS = (("Δ", "delta_"), ("τ", "tau"), ("σ", "sigma"))


def normalize_key(key: str) -> str:
    out = str(key)
    for symbol, name in _SYMBOLS:
        out = out.replace(symbol, name)
    return out


def _load_toml(path: PathLike) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


class SettingsLoader:
    """
    Strict, provenance-tracking settings loader.
    Unknown keys raise errors and every value is tagged with a source string.
    """

    def __init__(self) -> None:
        self.provenance: Dict[str, str] = {}

    def load(
        self,
        source: Union[None, PathLike, Mapping[str, Any]],
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> BistableSettings:
        settings = BistableSettings()
        if source is not None:
            if isinstance(source, Mapping):
                data, origin = dict(source), "mapping"
            else:
                data, origin = _load_toml(source), f"file:{os.fspath(source)}"
            # a combined file may carry the model parameters alongside
            data.pop("params", None)
            self._apply_layer(settings, data, origin)
        if overrides:
            apply_dotted_overrides(settings, overrides, self.provenance)
        return settings

    def _apply_layer(self, config: Any, data: Mapping[str, Any], source: str, prefix: str = "") -> None:
        for raw_key, value in data.items():
            key = normalize_key(raw_key)
            path = f"{prefix}.{key}" if prefix else key

            if isinstance(config, dict):
                if key not in config:
                    raise UnknownSettingsKeyError(path)
                existing = config[key]
            else:
                if not hasattr(config, key):
                    raise UnknownSettingsKeyError(path)
                existing = getattr(config, key)

            if is_dataclass(existing) or isinstance(existing, dict):
                if not isinstance(value, Mapping):
                    raise ConfigurationError(f"Expected a table at '{path}', got {type(value).__name__}")
                self._apply_layer(existing, value, source, prefix=path)
                continue

            if isinstance(config, dict):
                config[key] = value
            else:
                setattr(config, key, value)
            self.provenance[path] = source


def read_settings(
    source: Union[None, BistableSettings, PathLike, Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> BistableSettings:
    """
    Normalize ``source`` into :class:`BistableSettings`.

    Already-read settings are returned unchanged (a copy when ``overrides``
    are given), so calling this twice is harmless.
    """
    if isinstance(source, BistableSettings):
        if not overrides:
            return source
        settings = copy.deepcopy(source)
        apply_dotted_overrides(settings, overrides)
        return settings
    return SettingsLoader().load(source, overrides)


def read_params(
    source: Union[None, ModelParams, PathLike, Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ModelParams:
    """
    Read model parameters from a ``[params]`` table or top-level keys.

    Values other than ``delta_f`` are physical quantities (``"240ms"``).
    ``source=None`` gives the default parameter set.
    """
    if isinstance(source, ModelParams):
        if not overrides:
            return source
        data: Dict[str, Any] = {}
        params = copy.deepcopy(source)
    else:
        if source is None:
            data = dict(DEFAULT_PARAMS)
        elif isinstance(source, Mapping):
            data = dict(source)
        else:
            data = _load_toml(source)
        if isinstance(data.get("params"), Mapping):
            data = dict(data["params"])
        params = ModelParams()

    data.update(overrides or {})
    names = {f.name for f in fields(ModelParams)}
    for raw_key, value in data.items():
        key = normalize_key(raw_key)
        if key not in names:
            raise UnknownSettingsKeyError(f"params.{key}")
        if key == "delta_f":
            setattr(params, key, float(value))
        else:
            setattr(params, key, parse_quantity(value))
    logger.debug("Model parameters: %s", params)
    return params
