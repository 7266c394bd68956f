"""Invariant checks for pipeline results."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from .cohere import ncomponents
from .models import COMPONENT, FREQ, TIME, Coherence, PipelineResult, TaggedArray

logger = logging.getLogger(__name__)


_DEF_TOL = 1e-6


def validate_result(
    result: PipelineResult,
    strict: bool = False,
    pipeline_logger: Optional[Any] = None,
) -> Dict[str, Any]:
    """Validate output invariants of a model run.

    Args:
        result: PipelineResult returned by ``bistable_model``.
        strict: If True, raise AssertionError on failure.
        pipeline_logger: Optional PipelineLogger to record violations.

    Returns:
        ``{"status": "pass"}`` or ``{"status": "fail", "violations": [...]}``.
    """
    violations: List[str] = []

    _validate_percepts(result, violations)
    _validate_primary_source(result.primary_source, violations)
    if result.cohere is not None:
        _validate_coherence(result.cohere, violations)
    if result.sources is not None:
        lp = np.asarray(result.sources.track_lp.data)
        if lp.size and not np.all(np.isfinite(lp)):
            violations.append("Track log-probabilities must be finite")
        if result.cohere is not None and result.sources.track_lp.size(TIME) != result.cohere.size(TIME):
            violations.append("Track log-probabilities and coherence disagree on window count")

    out: Dict[str, Any] = {"status": "fail" if violations else "pass"}
    if violations:
        out["violations"] = violations
        if pipeline_logger is not None:
            pipeline_logger.log_event("contract", "violation", {"violations": violations})
        else:
            logger.warning("Contract violations: %s", violations)
        if strict:
            raise AssertionError(f"Pipeline Contract Violation: {'; '.join(violations)}")
    return out


def _validate_percepts(result: PipelineResult, violations: List[str]) -> None:
    ratio = np.asarray(result.percepts.ratio.data)
    if ratio.size and not np.all(np.isfinite(ratio)):
        violations.append("Bandwidth ratio contains non-finite values")
    elif ratio.size and np.any(ratio < 0):
        violations.append("Bandwidth ratio must be non-negative")

    counts = result.percepts.counts
    if np.any(counts.lengths <= 0):
        violations.append("Percept bouts must have positive length")
    if len(counts) != counts.fused.size:
        violations.append("Percept lengths and labels differ in size")
    duration = result.percepts.ratio.size(TIME) * (result.percepts.ratio.dt or 0.0)
    if abs(float(np.sum(counts.lengths)) - duration) > max(_DEF_TOL, 1e-9 * duration):
        violations.append(
            f"Percept bouts cover {float(np.sum(counts.lengths)):.4f}s but the ratio spans {duration:.4f}s"
        )


def _validate_primary_source(spmask: TaggedArray, violations: List[str]) -> None:
    if spmask.axes != (TIME, FREQ):
        violations.append(f"Primary source must have axes (time, freq), got {spmask.axes}")
        return
    data = np.asarray(spmask.data)
    if not np.all(np.isfinite(data)):
        violations.append("Primary source contains non-finite values")
    elif np.any(data < 0):
        violations.append("Primary source must be non-negative")


def _validate_coherence(C: Coherence, violations: List[str]) -> None:
    if not C.has_axis(COMPONENT) or C.axisdim(COMPONENT) != C.ndim - 1:
        violations.append(f"Coherence must end with a component axis, got {C.axes}")
        return
    if ncomponents(C) != C.params.ncomponents:
        violations.append("Coherence component count differs from its parameters")
    data = np.asarray(C.data)
    if not np.all(np.isfinite(data)):
        violations.append("Coherence contains non-finite values")
    times = C.axis_values(TIME)
    if times.size > 1 and not np.all(np.diff(times) > 0):
        violations.append("Coherence window times must increase")
