"""Percept read-out: bandwidth ratio and bout lengths."""
from __future__ import annotations

import logging
from typing import Any, Tuple

import numpy as np

from .config import BistableSettings
from .errors import AxisContractError, DimensionMismatchError
from .frontend import channels_per_octave
from .models import FREQ, TIME, PerceptLengths, TaggedArray
from .windowing import map_windowing

logger = logging.getLogger(__name__)


def _bandwidth(level: float, cpo: float):
    def fn(window: TaggedArray) -> float:
        data = np.asarray(window.data)
        if data.size == 0:
            return 0.0
        profile = np.mean(data, axis=0)
        return float(np.count_nonzero(profile > level)) / cpo
    return fn


def bandwidth_ratio(
    spmask: TaggedArray,
    spect: TaggedArray,
    *,
    threshold: float = 0.25,
    window_ms: float = 500.0,
    delta_ms: float = 250.0,
) -> Tuple[TaggedArray, TaggedArray, TaggedArray]:
    """
    Ratio of the primary source's bandwidth to the scene's, over time.

    In each window a channel counts towards the bandwidth when its mean level
    exceeds ``threshold`` times the scene's peak level. Bandwidths are in
    octaves. Windows where the scene has no bandwidth get a ratio of 0.

    Returns ``(ratio, sband, tband)``: the ratio, the source bandwidth and the
    total (scene) bandwidth, each a ``(time,)`` array over windows.
    """
    for name, x in (("spmask", spmask), ("spect", spect)):
        if x.axes != (TIME, FREQ) or not x.hastimes():
            raise AxisContractError(f"bandwidth_ratio expects a timed (time, freq) {name}, got {x.axes}")
    if spmask.shape != spect.shape:
        raise DimensionMismatchError(
            f"Dimension mismatch: source {spmask.shape} vs scene {spect.shape}"
        )

    scene = np.abs(np.asarray(spect.data))
    level = float(threshold) * float(scene.max()) if scene.size else 0.0
    cpo = channels_per_octave(spect)
    span = dict(length=float(window_ms) / 1000.0, step=float(delta_ms) / 1000.0)

    sband = map_windowing(_bandwidth(level, cpo), spmask.abs(), **span)
    tband = map_windowing(_bandwidth(level, cpo), spect.abs(), **span)

    s, t = np.asarray(sband.data), np.asarray(tband.data)
    ratio = np.divide(s, t, out=np.zeros_like(t, dtype=np.float64), where=t > 0)
    logger.debug("bandwidth_ratio: %d windows, mean ratio %.3f", ratio.size, float(ratio.mean()) if ratio.size else 0.0)
    return tband.with_data(ratio), sband, tband


def percept_lengths(ratio: TaggedArray, settings: Any = None) -> PerceptLengths:
    """
    Lengths (seconds) of the alternating percept bouts in ``ratio``.

    A window is heard as one fused stream when the ratio exceeds
    ``percept_lengths.threshold``. Bouts shorter than ``min_length_ms`` are
    absorbed by the bout before them.
    """
    cfg = settings.percept_lengths if isinstance(settings, BistableSettings) else dict(settings or {})
    threshold = float(cfg.get("threshold", 0.75))
    min_length = float(cfg.get("min_length_ms", 250.0)) / 1000.0

    values = np.asarray(ratio.data).reshape(-1)
    if values.size == 0:
        return PerceptLengths(lengths=np.zeros(0), fused=np.zeros(0, dtype=bool))
    step = float(ratio.dt) if ratio.dt is not None else 1.0

    fused = values > threshold
    edges = np.flatnonzero(np.diff(fused.astype(np.int8))) + 1
    starts = np.concatenate([[0], edges])
    stops = np.concatenate([edges, [fused.size]])

    bouts = []
    for start, stop in zip(starts, stops):
        label, length = bool(fused[start]), (stop - start) * step
        if bouts and (length < min_length or bouts[-1][0] == label):
            bouts[-1][1] += length
        else:
            bouts.append([label, length])

    return PerceptLengths(
        lengths=np.array([b[1] for b in bouts], dtype=np.float64),
        fused=np.array([b[0] for b in bouts], dtype=bool),
    )
