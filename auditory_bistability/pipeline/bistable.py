"""
Adaptation and mutual inhibition dynamics ("bistable adaptation").

Every unit along ``axis`` (a frequency channel, a scale band or a track)
evolves over time as a leaky response to its input minus its own slow
adaptation and the inhibition it receives from its neighbours, plus
Ornstein-Uhlenbeck noise::

    drive = |x| - c_a * a - c_m * m + c_sigma * n
    y    += (rect(drive) - y) * (1 - exp(-dt / tau_x))
    a    += (y - a)           * (1 - exp(-dt / tau_a))
    m    += (W @ y - m)       * (1 - exp(-dt / tau_m))
    n     = n * exp(-dt / tau_sigma) + sqrt(1 - exp(-2 dt / tau_sigma)) * xi

``W`` is a Gaussian of width ``W_m_sigma`` units with a zero diagonal (all
other units when ``W_m_sigma <= 0``), rows normalized to sum to one. The
time constants come from the model parameters with prefix ``f``, ``s`` or
``t`` for the ``freqs``, ``scales`` and ``track`` axes.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .config import ModelParams
from .determinism import DEFAULT_SEED, stage_rng
from .errors import AxisContractError, ConfigurationError
from .instrumentation import ProgressObserver, resolve_progress
from .models import FREQ, SCALE, TIME, TRACK, AdaptationResult, AdaptationState, TaggedArray

logger = logging.getLogger(__name__)

AXES = {
    "freqs": (FREQ, "f"),
    "scales": (SCALE, "s"),
    "track": (TRACK, "t"),
}

_EPS = 1e-12


def inhibition_weights(n: int, sigma: float) -> np.ndarray:
    if n <= 1:
        return np.zeros((n, n))
    if sigma > 0:
        d = np.arange(n)[:, np.newaxis] - np.arange(n)[np.newaxis, :]
        W = np.exp(-0.5 * (d / float(sigma)) ** 2)
    else:
        W = np.ones((n, n))
    np.fill_diagonal(W, 0.0)
    return W / np.maximum(W.sum(axis=1, keepdims=True), _EPS)


def _decay(dt: float, tau: float) -> float:
    return float(np.exp(-dt / tau))


def apply_bistable(
    x: TaggedArray,
    axis: str,
    params: ModelParams,
    *,
    intermediate_results: bool = False,
    progress: Optional[ProgressObserver] = None,
    seed: Optional[int] = DEFAULT_SEED,
    c_sigma: float = 0.1,
    c_a: float = 1.0,
    c_m: float = 0.5,
    W_m_sigma: float = 1.0,
    logspace: Optional[bool] = None,
    rectify: bool = True,
) -> AdaptationResult:
    """
    Run the adaptation dynamics over time, independently for every position
    of the axes other than ``time`` and ``axis``.

    Complex input is adapted in magnitude and keeps its phase. With
    ``logspace`` (default for ``axis="track"``) the input is treated as
    log-probabilities across the axis: they are normalized to probabilities,
    adapted, renormalized and returned as log-probabilities.
    """
    if axis not in AXES:
        raise ConfigurationError(f"Unknown adaptation axis '{axis}'; expected one of {sorted(AXES)}")
    name, prefix = AXES[axis]
    if not isinstance(x, TaggedArray) or not x.hastimes():
        raise AxisContractError("apply_bistable needs a TaggedArray with a time axis and a sample period")
    if x.axisdim(TIME) != 0:
        raise AxisContractError(f"apply_bistable expects time as the first axis, got {x.axes}")
    dim = x.axisdim(name)
    if logspace is None:
        logspace = axis == "track"

    tau_x = params.seconds(f"{prefix}_tau_x")
    tau_a = params.seconds(f"{prefix}_tau_a")
    tau_m = params.seconds(f"{prefix}_tau_m")
    tau_sigma = params.seconds(f"{prefix}_tau_sigma")
    dt = float(x.dt)

    data = np.asarray(x.data)
    phase = np.angle(data) if np.iscomplexobj(data) else None
    if logspace:
        shifted = data - np.max(data, axis=dim, keepdims=True)
        u = np.exp(shifted)
        u = u / np.sum(u, axis=dim, keepdims=True)
    else:
        u = np.abs(data).astype(np.float64)

    # (time, unit, rest)
    moved = np.moveaxis(u, dim, 1)
    n_time, n_unit = moved.shape[:2]
    rest_shape = moved.shape[2:]
    u2 = moved.reshape(n_time, n_unit, -1)

    W = inhibition_weights(n_unit, float(W_m_sigma))
    k_x, k_a, k_m = (1.0 - _decay(dt, tau_x), 1.0 - _decay(dt, tau_a), 1.0 - _decay(dt, tau_m))
    rho = _decay(dt, tau_sigma)
    noise_gain = np.sqrt(max(0.0, 1.0 - rho ** 2))

    rng = stage_rng(seed, f"bistable.{axis}")
    y = np.zeros(u2.shape[1:])
    a = np.zeros_like(y)
    m = np.zeros_like(y)
    n = rng.standard_normal(y.shape)

    out = np.empty_like(u2)
    traj = None
    if intermediate_results:
        traj = (np.empty_like(u2), np.empty_like(u2), np.empty_like(u2))

    progress = resolve_progress(progress)
    stage = f"Adaptation ({axis})"
    progress.start(stage, n_time)
    for t in range(n_time):
        n = rho * n + noise_gain * rng.standard_normal(y.shape)
        drive = u2[t] - c_a * a - c_m * m + c_sigma * n
        if rectify:
            drive = np.maximum(drive, 0.0)
        y = y + (drive - y) * k_x
        a = a + (y - a) * k_a
        m = m + (W @ y - m) * k_m
        out[t] = y
        if traj is not None:
            traj[0][t], traj[1][t], traj[2][t] = a, m, n
        progress.advance(stage, t)
    progress.finish(stage)

    def _restore(arr: np.ndarray) -> np.ndarray:
        return np.moveaxis(arr.reshape((n_time, n_unit) + rest_shape), 1, dim)

    result = _restore(out)
    if logspace:
        p = np.maximum(result, _EPS)
        result = np.log(p / np.sum(p, axis=dim, keepdims=True))
    elif phase is not None:
        result = result * np.exp(1j * phase)

    state = None
    if traj is not None:
        state = AdaptationState(
            adaptation=_restore(traj[0]),
            inhibition=_restore(traj[1]),
            noise=_restore(traj[2]),
        )
    logger.debug("apply_bistable(%s): %d steps x %d units (c_a=%g, c_m=%g, c_sigma=%g)",
                 axis, n_time, n_unit, c_a, c_m, c_sigma)
    return AdaptationResult(result=x.with_data(result), state=state)
