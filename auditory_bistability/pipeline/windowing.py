# auditory_bistability/pipeline/windowing.py
"""Sliding windows over the time axis of an array.

Window lengths and steps are either sample counts (``int``) or durations in
seconds (``float``). Durations need a timed signal (a :class:`TaggedArray`
with a sample period) and are converted with ``max(1, floor(d / dt))``.

Windows are trailing: the window ending at (exclusive) sample ``e`` covers
``range(max(0, e - length), e)``, so the first windows are shorter instead
of running off the start of the array. Window ends are
``minlength, minlength + step, ...`` up to the signal length.
"""
from __future__ import annotations

import math
import numbers
from typing import Any, Callable, Iterator, List, Optional, Sequence, Union

import numpy as np

from .errors import ConfigurationError
from .models import TIME, CoherenceParams, TaggedArray, WindowedSignal

Span = Union[int, float]


def _as_samples(value: Span, dt: Optional[float], name: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"window {name} must be a sample count or a duration, got {value!r}")
    if isinstance(value, numbers.Integral):
        samples = int(value)
    elif isinstance(value, numbers.Real):
        if dt is None:
            raise ConfigurationError(
                f"window {name} given as a duration ({value}s) but the signal has no sample period"
            )
        samples = max(1, math.floor(float(value) / dt))
    else:
        raise ValueError(f"window {name} must be a sample count or a duration, got {value!r}")
    if samples < 1:
        raise ValueError(f"window {name} must be at least one sample, got {value!r}")
    return samples


def _ranges(n: int, length: int, step: int, minlength: int) -> Iterator[range]:
    for end in range(minlength, n + 1, step):
        yield range(max(0, end - length), end)


def windowing(
    x: Any,
    axis: Union[None, int, str, CoherenceParams] = None,
    *,
    length: Optional[Span] = None,
    step: Optional[Span] = None,
    minlength: Optional[Span] = None,
) -> Union[WindowedSignal, Iterator[range]]:
    """
    Window the time axis of ``x``.

    ``windowing(x, params)`` uses the window and delta of a
    :class:`CoherenceParams`. A timed :class:`TaggedArray` yields a
    :class:`WindowedSignal`; anything else yields a lazy iterator of ranges.
    """
    if isinstance(axis, CoherenceParams):
        return windowing(x, length=axis.window, step=axis.delta)
    if length is None or step is None:
        raise ValueError("windowing requires both `length` and `step`")

    if isinstance(x, TaggedArray):
        dim = axis if isinstance(axis, int) else x.axisdim(axis or TIME)
        dt = x.dt if x.hastimes() else None
        n = x.shape[dim]
    else:
        dim = 0 if axis is None else int(axis)
        dt = None
        n = np.shape(x)[dim]

    length_ = _as_samples(length, dt, "length")
    step_ = _as_samples(step, dt, "step")
    minlength_ = length_ if minlength is None else _as_samples(minlength, dt, "minlength")

    if dt is None:
        return _ranges(n, length_, step_, minlength_)

    ends = np.arange(minlength_, n + 1, step_)
    return WindowedSignal(
        ranges=tuple(_ranges(n, length_, step_, minlength_)),
        times=ends * dt,
        dt=step_ * dt,
    )


def map_windowing(
    fn: Callable[[Any], Any],
    x: Any,
    axis: Union[None, int, str] = None,
    *,
    axes: Optional[Sequence[str]] = None,
    **kwds,
) -> Union[TaggedArray, List[Any]]:
    """Apply ``fn`` to the slice of ``x`` under each window."""
    windows = windowing(x, axis, **kwds)
    if not isinstance(windows, WindowedSignal):
        if isinstance(x, TaggedArray):
            dim = axis if isinstance(axis, int) else x.axisdim(axis or TIME)
        else:
            dim = 0 if axis is None else int(axis)
        return [fn(np.take(np.asarray(x), np.arange(w.start, w.stop), axis=dim)) for w in windows]

    name = axis if isinstance(axis, str) else TIME
    values = [np.asarray(fn(x.select(name, slice(w.start, w.stop)))) for w in windows]
    if values:
        data = np.stack(values)
    else:
        data = np.zeros((0,) * (1 + len(axes or ())))
    extra = tuple(axes) if axes is not None else tuple(f"axis_{i + 1}" for i in range(data.ndim - 1))
    return TaggedArray(
        data=data,
        axes=(TIME,) + extra,
        coords={TIME: windows.times},
        dt=windows.dt,
        meta=x.meta,
    )


def frame_length(params: CoherenceParams, x: TaggedArray) -> int:
    """Samples between successive coherence windows of ``x``."""
    return params.frame_length(x)


def window_length(params: CoherenceParams, x: TaggedArray) -> int:
    return params.window_length(x)
