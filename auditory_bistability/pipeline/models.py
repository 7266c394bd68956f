# auditory_bistability/pipeline/models.py
"""Dataclasses used by the pipeline stages.

The central type is :class:`TaggedArray`: a plain ``numpy`` buffer paired
with the names of its axes, optional coordinate values per axis, the sample
period of its time axis and a metadata record describing how it was made.
Axis lookup always goes through the explicit name → dimension mapping, so a
stage can assert the layout it expects (``x.axisdim("time") == 0``) instead
of guessing from shapes.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import AxisContractError, ConfigurationError
from .methods import CoherenceMethod, make_method

TIME = "time"
RATE = "rate"
SCALE = "scale"
FREQ = "freq"
COMPONENT = "component"
TRACK = "track"

CORTICAL_AXES = (TIME, RATE, SCALE, FREQ)

Index = Union[int, slice, Sequence[int], np.ndarray]


@dataclass(frozen=True, eq=False)
class TaggedArray:
    data: np.ndarray
    axes: Tuple[str, ...]
    coords: Dict[str, np.ndarray] = field(default_factory=dict)
    dt: Optional[float] = None          # sample period of the time axis (s)
    meta: Any = None                    # parameters that produced the data

    def __post_init__(self):
        data = np.asarray(self.data)
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "axes", tuple(self.axes))
        if data.ndim != len(self.axes):
            raise AxisContractError(
                f"Array has {data.ndim} dimensions but {len(self.axes)} axis names {self.axes}"
            )
        if len(set(self.axes)) != len(self.axes):
            raise AxisContractError(f"Duplicate axis names: {self.axes}")
        for name, values in self.coords.items():
            if name not in self.axes:
                raise AxisContractError(f"Coordinates given for unknown axis '{name}'")
            if len(values) != data.shape[self.axes.index(name)]:
                raise AxisContractError(
                    f"Axis '{name}' has {data.shape[self.axes.index(name)]} entries "
                    f"but {len(values)} coordinates"
                )

    # ------------------------------------------------------------------ #
    # numpy-ish surface                                                   #
    # ------------------------------------------------------------------ #
    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def ndim(self) -> int:
        return self.data.ndim

    @property
    def dtype(self):
        return self.data.dtype

    def __len__(self) -> int:
        return self.data.shape[0]

    def __array__(self, dtype=None, copy=None):
        return np.asarray(self.data, dtype=dtype)

    # ------------------------------------------------------------------ #
    # axis lookup                                                         #
    # ------------------------------------------------------------------ #
    def has_axis(self, name: str) -> bool:
        return name in self.axes

    def axisdim(self, name: str) -> int:
        try:
            return self.axes.index(name)
        except ValueError:
            raise AxisContractError(f"Array with axes {self.axes} has no '{name}' axis") from None

    def size(self, name: str) -> int:
        return self.data.shape[self.axisdim(name)]

    def hastimes(self) -> bool:
        return self.dt is not None and TIME in self.axes

    def axis_values(self, name: str) -> np.ndarray:
        if name in self.coords:
            return np.asarray(self.coords[name])
        if name == TIME and self.dt is not None:
            return np.arange(self.size(TIME)) * self.dt
        if name == COMPONENT:
            # component labels are 1-based
            return np.arange(1, self.size(COMPONENT) + 1)
        return np.arange(self.size(name))

    @property
    def times(self) -> np.ndarray:
        return self.axis_values(TIME)

    @property
    def duration(self) -> float:
        if self.dt is None:
            return 0.0
        return float(self.size(TIME) * self.dt)

    # ------------------------------------------------------------------ #
    # derived arrays                                                      #
    # ------------------------------------------------------------------ #
    def with_data(self, data: np.ndarray, **changes) -> "TaggedArray":
        return dataclasses.replace(self, data=data, **changes)

    def abs(self) -> "TaggedArray":
        return self.with_data(np.abs(self.data))

    def select(self, axis: str, index: Index) -> "TaggedArray":
        """Index one axis; an integer index drops the axis."""
        dim = self.axisdim(axis)
        slicer: List[Any] = [slice(None)] * self.ndim
        if isinstance(index, (int, np.integer)):
            slicer[dim] = int(index)
            axes = self.axes[:dim] + self.axes[dim + 1:]
            coords = {k: v for k, v in self.coords.items() if k != axis}
            return dataclasses.replace(self, data=self.data[tuple(slicer)], axes=axes, coords=coords)

        if not isinstance(index, slice):
            index = np.asarray(index, dtype=int)
        slicer[dim] = index
        coords = dict(self.coords)
        if axis in coords:
            coords[axis] = np.asarray(coords[axis])[index]
        elif axis == TIME and self.dt is not None:
            coords[axis] = self.axis_values(TIME)[index]
        return dataclasses.replace(self, data=self.data[tuple(slicer)], coords=coords)

    def band(self, axis: str, lo: float, hi: float) -> "TaggedArray":
        """Restrict ``axis`` to coordinates within ``[lo, hi]``."""
        values = self.axis_values(axis)
        keep = np.flatnonzero((values >= lo) & (values <= hi))
        if keep.size == 0:
            raise ConfigurationError(
                f"No '{axis}' coordinates inside [{lo}, {hi}] "
                f"(available {float(values.min()):.4g}..{float(values.max()):.4g})"
            )
        return self.select(axis, keep)


class Coherence(TaggedArray):
    """Coherence components: a tagged array ending in a ``component`` axis."""

    @property
    def params(self) -> "CoherenceParams":
        return self.meta


@dataclass(frozen=True)
class WindowedSignal:
    """Time-tagged sequence of sample index ranges."""

    ranges: Tuple[range, ...]
    times: np.ndarray
    dt: float

    def __len__(self) -> int:
        return len(self.ranges)

    def __iter__(self) -> Iterator[range]:
        return iter(self.ranges)

    def __getitem__(self, i):
        return self.ranges[i]


@dataclass(frozen=True)
class CoherenceParams:
    cort: Any
    ncomponents: int
    skipframes: int
    window: float   # seconds
    delta: float    # seconds
    method: CoherenceMethod

    def __post_init__(self):
        if int(self.ncomponents) < 1:
            raise ConfigurationError(f"ncomponents must be >= 1, got {self.ncomponents}")
        if int(self.skipframes) < 0:
            raise ConfigurationError(f"skipframes must be >= 0, got {self.skipframes}")
        if not (self.delta > 0):
            raise ConfigurationError(f"coherence delta must be positive, got {self.delta}s")
        if self.window < self.delta:
            raise ConfigurationError(
                f"coherence window ({self.window}s) must not be shorter than delta ({self.delta}s)"
            )

    @classmethod
    def build(
        cls,
        x: Any = None,
        *,
        ncomponents: int = 1,
        window_ms: float = 1000,
        window: Optional[float] = None,
        delta_ms: float = 10,
        delta: Optional[float] = None,
        method: Union[str, CoherenceMethod] = "nmf",
        skipframes: int = 0,
        **method_kwds,
    ) -> "CoherenceParams":
        if not isinstance(method, CoherenceMethod):
            method = make_method(method, **method_kwds)
        elif method_kwds:
            raise ConfigurationError(
                f"Method keywords {sorted(method_kwds)} given together with a method instance"
            )
        return cls(
            cort=getattr(x, "meta", None),
            ncomponents=int(ncomponents),
            skipframes=int(skipframes),
            window=float(window if window is not None else window_ms / 1000.0),
            delta=float(delta if delta is not None else delta_ms / 1000.0),
            method=method,
        )

    def frame_length(self, x: TaggedArray) -> int:
        return max(1, math.floor(self.delta / x.dt))

    def window_length(self, x: TaggedArray) -> int:
        return int(round(self.window / x.dt))


# -------------------------------------------------------------------------
# Adaptation / tracking / percept bundles
# -------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class AdaptationState:
    adaptation: np.ndarray
    inhibition: np.ndarray
    noise: np.ndarray


@dataclass(frozen=True, eq=False)
class AdaptationResult:
    result: Any
    state: Optional[AdaptationState] = None


@dataclass(frozen=True, eq=False)
class PerceptLengths:
    lengths: np.ndarray     # bout durations in seconds
    fused: np.ndarray       # True where the bout is the one-stream percept

    def __len__(self) -> int:
        return int(self.lengths.size)


@dataclass(frozen=True, eq=False)
class PerceptStatistics:
    ratio: TaggedArray
    counts: PerceptLengths
    sband: Optional[TaggedArray] = None
    tband: Optional[TaggedArray] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ratio": self.ratio.data.tolist(),
            "times": self.ratio.times.tolist(),
            "lengths": self.counts.lengths.tolist(),
            "fused": self.counts.fused.tolist(),
        }


@dataclass(frozen=True, eq=False)
class TrackingResult:
    tracks: List[Coherence]
    track_lp: TaggedArray
    adaptation: Optional[AdaptationState] = None


@dataclass(frozen=True, eq=False)
class PipelineResult:
    percepts: PerceptStatistics
    primary_source: TaggedArray
    sources: Optional[TrackingResult] = None
    cohere: Optional[Coherence] = None
    cortical: Optional[AdaptationResult] = None
    cortical_clean: Optional[TaggedArray] = None
    spect: Optional[AdaptationResult] = None
    input: Optional[TaggedArray] = None
