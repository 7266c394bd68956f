"""
Source tracking (sequential grouping) over coherence components.

Each track follows the K components of a coherence array from window to
window with its own smoothing time constant ("prior"). Components are
matched to the track's current estimate by a minimum-cost assignment, so a
component keeps its slot while its spectral shape changes slowly. Per window
each track reports how well its prediction explained the new components as a
Gaussian log-likelihood.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import linear_sum_assignment

from .cohere import mask
from .errors import AxisContractError, ComponentSelectionError, ConfigurationError, DimensionMismatchError
from .instrumentation import ProgressObserver, resolve_progress
from .models import COMPONENT, TIME, TRACK, Coherence, TaggedArray

logger = logging.getLogger(__name__)

_EPS = 1e-12


def _unit_columns(x: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(x, axis=0)
    return x / np.where(norms > _EPS, norms, 1.0)


class PriorTracker:
    """
    One track: exponentially smoothed component estimates.

    ``step`` takes the ``(D, K)`` components of a window, reorders them to
    match the current estimate, scores the match and folds them into the
    estimate.
    """

    def __init__(self, tau: float, dt: float, sigma: float) -> None:
        if tau <= 0:
            raise ConfigurationError(f"Track prior time constants must be positive, got {tau}")
        if sigma <= 0:
            raise ConfigurationError(f"source_sigma must be positive, got {sigma}")
        self.tau = float(tau)
        self.alpha = float(1.0 - np.exp(-dt / tau))
        self.sigma = float(sigma)
        self.mean: Optional[np.ndarray] = None

    def _assign(self, obs: np.ndarray) -> np.ndarray:
        """Permute the columns of ``obs`` onto the current estimate."""
        pred = _unit_columns(self.mean)
        cand = _unit_columns(obs)
        cost = np.sum((pred[:, :, np.newaxis] - cand[:, np.newaxis, :]) ** 2, axis=0)
        row_idx, col_idx = linear_sum_assignment(cost)
        order = np.empty(obs.shape[1], dtype=int)
        order[row_idx] = col_idx
        return obs[:, order]

    def step(self, obs: np.ndarray) -> Tuple[np.ndarray, float]:
        scale = float(np.max(np.abs(obs)))
        scale = scale if scale > _EPS else 1.0
        if self.mean is None:
            self.mean = obs.copy()
            return self.mean.copy(), 0.0

        aligned = self._assign(obs)
        ref_scale = float(np.max(np.abs(self.mean)))
        ref_scale = ref_scale if ref_scale > _EPS else 1.0
        err = aligned / scale - self.mean / ref_scale
        lp = -0.5 * float(np.mean(err ** 2)) / self.sigma ** 2

        self.mean = self.mean + self.alpha * (aligned - self.mean)
        return self.mean.copy(), lp


def _energy_order(est: np.ndarray) -> np.ndarray:
    return np.argsort(-np.sum(np.abs(est), axis=0), kind="stable")


def track(
    C: Coherence,
    method: str = "multi_prior",
    *,
    priors_s: Sequence[float] = (0.5, 4.0),
    source_sigma: float = 0.25,
    progress: Optional[ProgressObserver] = None,
) -> Tuple[List[Coherence], TaggedArray]:
    """
    Track the components of ``C`` under several smoothing priors.

    Returns one :class:`Coherence` per prior (components ordered by energy in
    every window) and the ``(time, track)`` log-likelihood of each track.
    """
    if method != "multi_prior":
        raise ConfigurationError(f"Unknown tracking method '{method}'; expected 'multi_prior'")
    if not C.has_axis(COMPONENT) or C.axisdim(TIME) != 0 or C.axisdim(COMPONENT) != C.ndim - 1:
        raise AxisContractError(f"track expects axes (time, ..., component), got {C.axes}")
    if not priors_s:
        raise ConfigurationError("track needs at least one prior time constant")

    n_win, K = C.size(TIME), C.size(COMPONENT)
    data = np.asarray(C.data)
    flat = data.reshape(n_win, -1, K)
    trackers = [PriorTracker(float(tau), float(C.dt), float(source_sigma)) for tau in priors_s]

    tracks = np.zeros((len(trackers),) + data.shape, dtype=np.float64)
    track_lp = np.zeros((n_win, len(trackers)), dtype=np.float64)

    progress = resolve_progress(progress)
    progress.start("Source Tracking", n_win)
    for i in range(n_win):
        for j, tracker in enumerate(trackers):
            est, lp = tracker.step(flat[i])
            est = est[:, _energy_order(est)]
            tracks[j, i] = est.reshape(data.shape[1:])
            track_lp[i, j] = lp
        progress.advance("Source Tracking", i)
    progress.finish("Source Tracking")

    logger.info("track: %d windows, %d components, priors=%s", n_win, K, list(priors_s))
    track_arrays = [C.with_data(t) for t in tracks]
    lp = TaggedArray(
        data=track_lp,
        axes=(TIME, TRACK),
        coords={TIME: C.axis_values(TIME), TRACK: np.arange(1, len(trackers) + 1)},
        dt=C.dt,
        meta=C.meta,
    )
    return track_arrays, lp


def primary_component(tracks: List[Coherence], track_lp: TaggedArray, order: int = 1) -> Coherence:
    """
    Per window, the ``order``-th component (1-based, by energy) of the most
    probable track, as a single-component coherence array.
    """
    if not tracks:
        raise ConfigurationError("primary_component needs at least one track")
    K = tracks[0].size(COMPONENT)
    if not 1 <= int(order) <= K:
        raise ComponentSelectionError(f"No component {order}; tracks have components 1..{K}")
    if track_lp.size(TIME) != tracks[0].size(TIME) or track_lp.size(TRACK) != len(tracks):
        raise DimensionMismatchError(
            f"Dimension mismatch: track_lp {track_lp.shape} vs {len(tracks)} tracks "
            f"of {tracks[0].size(TIME)} windows"
        )

    best = np.argmax(np.asarray(track_lp.data), axis=1)
    stacked = np.stack([np.asarray(t.data)[..., int(order) - 1] for t in tracks])
    picked = stacked[best, np.arange(best.size)]
    coords = dict(tracks[0].coords)
    coords[COMPONENT] = np.array([int(order)])
    return tracks[0].with_data(picked[..., np.newaxis], coords=coords)


def mask_tracks(
    reference: TaggedArray,
    tracks: List[Coherence],
    track_lp: TaggedArray,
    order: int = 1,
    *,
    progress: Optional[ProgressObserver] = None,
) -> TaggedArray:
    """Mask ``reference`` with the component picked by :func:`primary_component`."""
    return mask(reference, primary_component(tracks, track_lp, order), progress=progress)
