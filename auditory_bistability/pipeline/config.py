from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, NamedTuple, Optional, Union

from .errors import ConfigurationError


# ------------------------------------------------------------
# Physical quantities
# ------------------------------------------------------------

class Quantity(NamedTuple):
    value: float    # magnitude in SI base units
    unit: str       # "s", "Hz" or "" for unitless

    def __str__(self) -> str:
        return f"{self.value:g} {self.unit}".strip()


# scale to the base unit of each dimension
_UNITS = {
    "s": (1.0, "s"),
    "ms": (1e-3, "s"),
    "us": (1e-6, "s"),
    "min": (60.0, "s"),
    "Hz": (1.0, "Hz"),
    "kHz": (1e3, "Hz"),
}

_QUANTITY_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)\s*([A-Za-z]*)\s*$")


def parse_quantity(value: Union[str, Quantity, float, int]) -> Quantity:
    """Parse ``"240ms"`` / ``"0.5 kHz"`` into a :class:`Quantity` in base units."""
    if isinstance(value, Quantity):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Quantity(float(value), "")
    if not isinstance(value, str):
        raise ConfigurationError(f"Cannot interpret {value!r} as a physical quantity")
    match = _QUANTITY_RE.match(value)
    if match is None:
        raise ConfigurationError(f"Cannot interpret {value!r} as a physical quantity")
    number, unit = match.groups()
    if not unit:
        return Quantity(float(number), "")
    if unit not in _UNITS:
        raise ConfigurationError(f"Unknown unit '{unit}' in {value!r}; expected one of {sorted(_UNITS)}")
    scale, base = _UNITS[unit]
    return Quantity(float(number) * scale, base)


# ------------------------------------------------------------
# Model parameters (time constants for the adaptation dynamics)
# ------------------------------------------------------------

@dataclass
class ModelParams:
    # stimulus
    delta_t: Optional[Quantity] = None      # tone onset spacing
    f: Optional[Quantity] = None            # A tone frequency
    delta_f: float = 6.0                    # A-B separation (semitones)

    # simultaneous grouping along frequency
    f_tau_sigma: Optional[Quantity] = None
    f_tau_m: Optional[Quantity] = None
    f_tau_a: Optional[Quantity] = None
    f_tau_x: Optional[Quantity] = None

    # simultaneous grouping along scales
    s_tau_sigma: Optional[Quantity] = None
    s_tau_m: Optional[Quantity] = None
    s_tau_a: Optional[Quantity] = None
    s_tau_x: Optional[Quantity] = None

    # sequential grouping over track likelihoods
    t_tau_sigma: Optional[Quantity] = None
    t_tau_m: Optional[Quantity] = None
    t_tau_a: Optional[Quantity] = None
    t_tau_x: Optional[Quantity] = None

    def seconds(self, name: str) -> float:
        check_units(self, "s", name)
        return float(getattr(self, name).value)

    def hertz(self, name: str) -> float:
        check_units(self, "Hz", name)
        return float(getattr(self, name).value)


DEFAULT_PARAMS: Dict[str, Any] = {
    "delta_t": "120ms",
    "f": "500Hz",
    "delta_f": 6.0,
    "f_tau_sigma": "500ms",
    "f_tau_m": "50ms",
    "f_tau_a": "2s",
    "f_tau_x": "10ms",
    "s_tau_sigma": "500ms",
    "s_tau_m": "50ms",
    "s_tau_a": "2s",
    "s_tau_x": "10ms",
    "t_tau_sigma": "500ms",
    "t_tau_m": "100ms",
    "t_tau_a": "3s",
    "t_tau_x": "50ms",
}

PARAM_UNITS: Dict[str, str] = {
    "delta_t": "s",
    "f": "Hz",
    **{f"{p}_tau_{k}": "s" for p in ("f", "s", "t") for k in ("sigma", "m", "a", "x")},
}


def check_units(params: Any, unit: str, name: str) -> None:
    value = getattr(params, name, None)
    if value is None:
        raise ConfigurationError(f"Missing model parameter '{name}' (expected units of {unit})")
    if not isinstance(value, Quantity) or value.unit != unit:
        raise ConfigurationError(
            f"Model parameter '{name}' must be given in units of {unit}, got {value!s}"
        )
    if not value.value > 0:
        raise ConfigurationError(f"Model parameter '{name}' must be positive, got {value!s}")


def check_params(params: ModelParams) -> None:
    """Validate presence and units of every parameter the model reads."""
    for name, unit in PARAM_UNITS.items():
        check_units(params, unit, name)


# ------------------------------------------------------------
# Settings: simultaneous grouping (frequency / scales)
# ------------------------------------------------------------

@dataclass
class FreqsConfig:
    # auditory spectrogram front end
    analyze: Dict[str, Any] = field(
        default_factory=lambda: {
            "frame_ms": 10.0,
            "n_fft": 512,
            "min_freq": 100.0,
            "max_freq": 3500.0,
            "channels_per_octave": 12,
        }
    )

    # adaptation + mutual inhibition across frequency channels
    bistable: Dict[str, Any] = field(
        default_factory=lambda: {
            "c_sigma": 0.1,
            "c_a": 1.0,
            "c_m": 0.5,
            "W_m_sigma": 6.0,   # inhibition spread in channels
        }
    )


@dataclass
class ScalesConfig:
    analyze: Dict[str, Any] = field(
        default_factory=lambda: {
            "scales": [0.5, 1.0, 2.0, 4.0],   # cycles / octave
        }
    )

    bistable: Dict[str, Any] = field(
        default_factory=lambda: {
            "c_sigma": 0.1,
            "c_a": 1.0,
            "c_m": 0.5,
            "W_m_sigma": 1.0,   # inhibition spread in scale bands
        }
    )


# ------------------------------------------------------------
# Settings: sequential grouping (tracking)
# ------------------------------------------------------------

@dataclass
class TrackConfig:
    analyze: Dict[str, Any] = field(
        default_factory=lambda: {
            "method": "multi_prior",
            "priors_s": [0.5, 4.0],     # smoothing time constant per track
            "source_sigma": 0.25,
        }
    )

    bistable: Dict[str, Any] = field(
        default_factory=lambda: {
            "c_sigma": 0.2,
            "c_a": 4.0,
            "c_m": 2.0,
            "W_m_sigma": 0.0,   # 0: every other track inhibits equally
        }
    )


# ------------------------------------------------------------
# Settings (top level)
# ------------------------------------------------------------

@dataclass
class BistableSettings:
    seed: Optional[int] = 0
    freqs: FreqsConfig = field(default_factory=FreqsConfig)
    scales: ScalesConfig = field(default_factory=ScalesConfig)

    # cortical rates; the analysis band is applied before rate filtering
    rates: Dict[str, Any] = field(
        default_factory=lambda: {
            "rates": [-8.0, -4.0, -2.0, 2.0, 4.0, 8.0],   # Hz, sign = sweep direction
            "freq_limits_Hz": [200.0, 2000.0],
        }
    )

    # temporal coherence
    nmf: Dict[str, Any] = field(
        default_factory=lambda: {
            "method": "nmf",
            "ncomponents": 2,
            "window_ms": 1000.0,
            "delta_ms": 250.0,
            "skipframes": 1,
            "maxiter": 100,
            "tol": 1e-4,
            "max_retries": 2,
        }
    )

    track: TrackConfig = field(default_factory=TrackConfig)

    mask: Dict[str, Any] = field(
        default_factory=lambda: {
            "order": 1,     # component of the winning track used as primary source
        }
    )

    bandwidth_ratio: Dict[str, Any] = field(
        default_factory=lambda: {
            "threshold": 0.25,      # fraction of the scene's peak level
            "window_ms": 500.0,
            "delta_ms": 250.0,
        }
    )

    percept_lengths: Dict[str, Any] = field(
        default_factory=lambda: {
            "threshold": 0.75,      # ratio above which the scene is heard as one stream
            "min_length_ms": 250.0,
        }
    )

    stimulus: Dict[str, Any] = field(
        default_factory=lambda: {
            "sample_rate": 8000,
            "tone_length_ms": 50.0,
            "ramp_ms": 10.0,
            "repeats": 10,
        }
    )

    def section_names(self) -> List[str]:
        return [f.name for f in fields(self)]
