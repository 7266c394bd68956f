# auditory_bistability/pipeline/cohere.py
"""
Temporal coherence analysis and mask resynthesis.

``cohere`` slides a window over a ``(time, rate, scale, freq)`` cortical
representation and asks a component extraction method (see ``methods.py``)
for K components per window. ``mask`` goes the other way: it spreads one
component's per-window weights back over the samples each window covered,
averages the overlaps and applies the result to the magnitude of a reference
cortical representation while keeping its phase.
"""
from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np

from .errors import (
    AxisContractError,
    ComponentSelectionError,
    ConfigurationError,
    DimensionMismatchError,
    ExtractionError,
)
from .instrumentation import ProgressObserver, resolve_progress
from .models import (
    COMPONENT,
    CORTICAL_AXES,
    RATE,
    TIME,
    Coherence,
    CoherenceParams,
    TaggedArray,
)
from .windowing import windowing

logger = logging.getLogger(__name__)

__all__ = [
    "cohere",
    "component",
    "components",
    "component_means",
    "mask",
    "mask_weights",
    "ncomponents",
]


def ncomponents(x: Union[CoherenceParams, TaggedArray]) -> int:
    if isinstance(x, CoherenceParams):
        return x.ncomponents
    return x.size(COMPONENT)


def components(x: Union[CoherenceParams, TaggedArray]) -> np.ndarray:
    """1-based component labels."""
    if isinstance(x, CoherenceParams):
        return np.arange(1, x.ncomponents + 1)
    return x.axis_values(COMPONENT)


def component(x: TaggedArray, n: int) -> TaggedArray:
    """Select component ``n`` (1-based), keeping a length-1 component axis."""
    idx = np.flatnonzero(components(x) == n)
    if idx.size == 0:
        raise ComponentSelectionError(
            f"No component {n}; available components are {components(x).tolist()}"
        )
    return x.select(COMPONENT, idx[:1])


def component_means(C: TaggedArray) -> np.ndarray:
    dim = C.axisdim(COMPONENT)
    others = tuple(d for d in range(C.ndim) if d != dim)
    return np.asarray(np.mean(C.data, axis=others)).reshape(-1)


def cohere(
    x: TaggedArray,
    params: Optional[CoherenceParams] = None,
    *,
    progress: Optional[ProgressObserver] = None,
    **kwds,
) -> Coherence:
    """
    Extract coherence components from a cortical representation.

    Parameters
    ----------
    x : TaggedArray
        Cortical rates with axes ``(time, rate, scale, freq)`` and a sample
        period. An array that already has a ``component`` axis is only
        re-tagged with ``params``.
    params : CoherenceParams, optional
        Built from ``kwds`` when omitted (``ncomponents``, ``window_ms``,
        ``delta_ms``, ``method``, ``skipframes`` and method keywords).
    progress : ProgressObserver, optional
        Receives one ``advance`` per window.

    Returns
    -------
    Coherence
        Axes ``(time, *method.component_axes, component)``, one time entry
        per window.
    """
    if params is None:
        params = CoherenceParams.build(x, **kwds)
    elif kwds:
        raise ConfigurationError(f"Unexpected keywords {sorted(kwds)} together with explicit params")

    if not isinstance(x, TaggedArray):
        raise AxisContractError("cohere expects a TaggedArray with named axes")

    # components already computed: wrap the values with the new parameters
    if x.has_axis(COMPONENT):
        if x.size(COMPONENT) != params.ncomponents:
            raise ConfigurationError(
                f"Cannot re-tag {x.size(COMPONENT)} components with params for {params.ncomponents}"
            )
        coords = dict(x.coords)
        coords.setdefault(COMPONENT, np.arange(1, params.ncomponents + 1))
        return Coherence(data=x.data, axes=x.axes, coords=coords, dt=params.delta, meta=params)

    if x.ndim != 4 or x.axes != CORTICAL_AXES:
        raise AxisContractError(f"cohere expects axes {CORTICAL_AXES}, got {x.axes}")
    if not x.hastimes():
        raise AxisContractError("cohere needs an input with a sample period")

    windows = windowing(x, params)
    method = params.method
    K = params.ncomponents
    comp_axes = tuple(method.component_axes)
    comp_shape = method.component_shape(x.shape)

    data = np.zeros((len(windows),) + comp_shape + (K,), dtype=method.eltype(x))
    progress = resolve_progress(progress)
    progress.start("Temporal Coherence Analysis", len(windows))
    logger.debug("cohere: %d windows, K=%d, method=%r", len(windows), K, method)

    with method.session(K) as extract:
        for i, w_inds in enumerate(windows):
            skipped = np.arange(w_inds.start, w_inds.stop)[:: 1 + params.skipframes]
            result = np.asarray(extract(x.data[skipped]))
            if result.shape != data.shape[1:]:
                raise AxisContractError(
                    f"Method {method.name!r} returned shape {result.shape}, expected {data.shape[1:]}"
                )
            if not np.all(np.isfinite(result)):
                raise ExtractionError(f"Method {method.name!r} returned non-finite values in window {i}")
            data[i] = result
            progress.advance("Temporal Coherence Analysis", i)

    progress.finish("Temporal Coherence Analysis")

    coords = {TIME: windows.times, COMPONENT: np.arange(1, K + 1)}
    for ax in comp_axes:
        if ax in x.coords:
            coords[ax] = np.asarray(x.coords[ax])
    return Coherence(
        data=data,
        axes=(TIME,) + comp_axes + (COMPONENT,),
        coords=coords,
        dt=params.delta,
        meta=params,
    )


def _check_mask_layout(reference: TaggedArray, C: TaggedArray) -> int:
    """Return how many leading axes of ``reference`` the weights broadcast over."""
    if ncomponents(C) != 1:
        raise ComponentSelectionError(
            "Please select one component (see documentation for `component`)."
        )
    if not isinstance(C.meta, CoherenceParams):
        raise AxisContractError("mask needs coherence components tagged with their CoherenceParams")
    if reference.axisdim(TIME) != 0:
        raise AxisContractError(f"Reference time axis must come first, got axes {reference.axes}")
    if C.axisdim(TIME) != 0 or C.axisdim(COMPONENT) != C.ndim - 1:
        raise AxisContractError(f"Coherence axes must be (time, ..., component), got {C.axes}")

    comp_axes = C.axes[1:-1]
    n_lead = reference.ndim - len(comp_axes)
    lead = reference.axes[:n_lead]
    if lead not in ((TIME,), (TIME, RATE)):
        raise AxisContractError(
            f"Reference axes {reference.axes} do not end with the component axes {comp_axes}"
        )
    if reference.axes[n_lead:] != comp_axes:
        raise AxisContractError(f"Reference axes {reference.axes} do not match {C.axes}")
    if reference.shape[n_lead:] != C.shape[1:-1]:
        raise DimensionMismatchError(
            f"Dimension mismatch: reference {dict(zip(reference.axes, reference.shape))} "
            f"vs coherence {dict(zip(C.axes, C.shape))}"
        )
    return n_lead


def mask_weights(
    reference: TaggedArray,
    C: TaggedArray,
    *,
    progress: Optional[ProgressObserver] = None,
) -> np.ndarray:
    """
    Overlap-averaged component weights, shaped like ``reference``.

    Each window's weights are added to every sample it covered, divided by
    the number of windows covering the sample and rescaled so the peak
    absolute weight is 1.
    """
    n_lead = _check_mask_layout(reference, C)

    windows = windowing(reference, C.meta)
    if len(windows) != C.size(TIME):
        raise DimensionMismatchError(
            f"Dimension mismatch: reference yields {len(windows)} windows, "
            f"coherence has {C.size(TIME)}"
        )

    y = np.zeros(reference.shape, dtype=np.result_type(C.dtype, np.float64))
    norm = np.zeros(reference.shape[0], dtype=np.float64)
    progress = resolve_progress(progress)
    progress.start("Masking", len(windows))
    for i, w_inds in enumerate(windows):
        c = C.data[i, ..., 0]
        y[w_inds.start:w_inds.stop] += c.reshape((1,) * n_lead + c.shape)
        norm[w_inds.start:w_inds.stop] += 1
        progress.advance("Masking", i)
    progress.finish("Masking")

    covered = norm > 0
    if not np.all(covered):
        logger.warning("mask: %d samples are not covered by any window; weight set to 0",
                       int(np.count_nonzero(~covered)))
    y[covered] /= norm[covered].reshape((-1,) + (1,) * (y.ndim - 1))

    peak = float(np.max(np.abs(y))) if y.size else 0.0
    if peak > 0:
        y /= peak
    return y


def mask(
    reference: TaggedArray,
    C: TaggedArray,
    *,
    progress: Optional[ProgressObserver] = None,
) -> TaggedArray:
    """
    Resynthesize ``reference`` weighted by a single coherence component.

    The output is ``sqrt(|reference| * w) * exp(i * angle(reference))``
    where ``w`` comes from :func:`mask_weights`, tagged like ``reference``.
    """
    y = mask_weights(reference, C, progress=progress)
    ref = np.asarray(reference.data)
    if not np.iscomplexobj(y) and np.any(y < 0):
        raise ExtractionError("Mask weights must be non-negative; the coherence method broke its contract")
    masked = np.sqrt(np.abs(ref) * y) * np.exp(1j * np.angle(ref))
    return reference.with_data(masked)
