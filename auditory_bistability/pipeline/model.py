"""
Pipeline controller for the bistable streaming model.

Stages run strictly in order and every failure propagates to the caller:

1. auditory spectrogram, adapted along frequency
2. cortical scales of the adapted spectrogram (adapted along scale) and of
   the unadapted one (kept clean for resynthesis)
3. cortical rates of the adapted scales
4. temporal coherence (simultaneous grouping)
5. source tracking with adapted track likelihoods (sequential grouping)
6. mask of the primary source on the band-limited clean scales
7. bandwidth ratio of source vs. scene and percept bout lengths
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Mapping, Optional, Union

import numpy as np

from .cohere import cohere
from .config import BistableSettings, ModelParams, check_params
from .config_loader import read_params, read_settings
from .cortical import cortical_rates, cortical_scales, cortical_to_spect
from .bistable import apply_bistable
from .frontend import aba_stimulus, as_spectrogram, load_audio
from .instrumentation import LoggingProgress, PipelineLogger, ProgressObserver, resolve_progress
from .models import (
    FREQ,
    CoherenceParams,
    PerceptStatistics,
    PipelineResult,
    TaggedArray,
    TrackingResult,
)
from .percepts import bandwidth_ratio, percept_lengths
from .tracking import mask_tracks, track

logger = logging.getLogger(__name__)

Stimulus = Union[None, str, "os.PathLike[str]", np.ndarray, TaggedArray]


class _StageTimer:
    """Times one stage and reports it to the pipeline logger, if any."""

    def __init__(self, name: str, pipeline_logger: Optional[PipelineLogger]):
        self.name = name
        self.pipeline_logger = pipeline_logger
        self.t0 = 0.0

    def __enter__(self):
        self.t0 = time.perf_counter()
        logger.info("Stage %s: start", self.name)
        return self

    def __exit__(self, exc_type, exc, tb):
        elapsed = time.perf_counter() - self.t0
        if exc_type is None:
            logger.info("Stage %s: done in %.2fs", self.name, elapsed)
            if self.pipeline_logger is not None:
                self.pipeline_logger.record_timing(self.name, elapsed)
        elif self.pipeline_logger is not None:
            self.pipeline_logger.log_event(self.name, "error", {"error": repr(exc)})
            # failed runs still write timing.json
            self.pipeline_logger.finalize()
        return False


def _resolve_observer(
    progressbar: Union[None, bool, ProgressObserver],
    interactive: bool,
    pipeline_logger: Optional[PipelineLogger],
) -> ProgressObserver:
    if isinstance(progressbar, ProgressObserver):
        return progressbar
    if progressbar is None:
        progressbar = interactive
    if progressbar:
        return LoggingProgress()
    return resolve_progress(pipeline_logger)


# factorization keywords in the [nmf] section that other methods do not take
_NMF_KEYWORDS = ("maxiter", "tol", "max_retries", "seed", "eps", "warm_start")


def _coherence_params(cr: TaggedArray, settings: BistableSettings) -> CoherenceParams:
    nmf = dict(settings.nmf)
    if nmf.get("method", "nmf") == "nmf":
        nmf.setdefault("seed", settings.seed)
    else:
        for key in _NMF_KEYWORDS:
            nmf.pop(key, None)
    return CoherenceParams.build(cr, **nmf)


def bistable_model(
    params: Union[None, ModelParams, Mapping[str, Any], str],
    settings: Union[None, BistableSettings, Mapping[str, Any], str],
    stimulus: Stimulus = None,
    *,
    interactive: bool = False,
    progressbar: Union[None, bool, ProgressObserver] = None,
    intermediate_results: Optional[bool] = None,
    pipeline_logger: Optional[PipelineLogger] = None,
) -> PipelineResult:
    """
    Run the full model on ``stimulus``.

    Parameters
    ----------
    params, settings
        Anything :func:`read_params` / :func:`read_settings` accept. Both are
        validated before any computation.
    stimulus
        ``None`` synthesizes the ABA_ stimulus from ``params``; a path is
        loaded as audio; an ndarray is audio at ``settings.stimulus
        ["sample_rate"]``; a ``(time, freq)`` :class:`TaggedArray` is used as
        the auditory spectrogram.
    interactive
        Default for ``progressbar`` and ``intermediate_results``.
    progressbar
        ``True`` logs progress, or pass a :class:`ProgressObserver`.
    intermediate_results
        Keep every intermediate artifact (and adaptation states) in the
        result instead of only the percepts and the primary source.
    """
    settings = read_settings(settings)
    params = read_params(params)
    check_params(params)
    if intermediate_results is None:
        intermediate_results = interactive
    progress = _resolve_observer(progressbar, interactive, pipeline_logger)
    if pipeline_logger is not None:
        pipeline_logger.emit_config("model", settings, {"params": {k: str(v) for k, v in vars(params).items()}})
    seed = settings.seed

    # ---------------- Auditory spectrogram ----------------
    with _StageTimer("spectrogram", pipeline_logger):
        if stimulus is None:
            audio, sr = aba_stimulus(params, settings)
            spect = as_spectrogram(audio, settings, sr)
        elif isinstance(stimulus, (str, os.PathLike)):
            sr = int(settings.stimulus.get("sample_rate", 8000))
            spect = as_spectrogram(load_audio(os.fspath(stimulus), sr), settings, sr)
        else:
            spect = as_spectrogram(stimulus, settings)

        spectat = apply_bistable(
            spect, "freqs", params,
            intermediate_results=intermediate_results, progress=progress, seed=seed,
            **settings.freqs.bistable,
        )
        specta = spectat.result

    # ---------------- Cortical scales ----------------
    with _StageTimer("scales", pipeline_logger):
        cs = cortical_scales(specta, progress=progress, **settings.scales.analyze)
        csclean = cortical_scales(spect, progress=progress, **settings.scales.analyze)
        csat = apply_bistable(
            cs, "scales", params,
            intermediate_results=intermediate_results, progress=progress, seed=seed,
            **settings.scales.bistable,
        )

    # ---------------- Cortical rates ----------------
    with _StageTimer("rates", pipeline_logger):
        crs = cortical_rates(csat.result, progress=progress, **settings.rates)

    # ---------------- Temporal coherence ----------------
    with _StageTimer("cohere", pipeline_logger):
        C = cohere(crs, _coherence_params(crs, settings), progress=progress)

    # ---------------- Source tracking ----------------
    with _StageTimer("track", pipeline_logger):
        analyze = dict(settings.track.analyze)
        method = analyze.pop("method", "multi_prior")
        tracks, track_lp = track(C, method, progress=progress, **analyze)
        track_lp_at = apply_bistable(
            track_lp, "track", params,
            intermediate_results=intermediate_results, progress=progress, seed=seed,
            **settings.track.bistable,
        )
        track_lp = track_lp_at.result

    # ---------------- Primary source mask ----------------
    start_hz, stop_hz = (float(v) for v in settings.rates["freq_limits_Hz"])
    with _StageTimer("mask", pipeline_logger):
        crmask = mask_tracks(
            csclean.band(FREQ, start_hz, stop_hz), tracks, track_lp,
            progress=progress, **settings.mask,
        )
        spmask = cortical_to_spect(crmask)

    # ---------------- Percepts ----------------
    with _StageTimer("percepts", pipeline_logger):
        ratio, sband, tband = bandwidth_ratio(
            spmask, spect.band(FREQ, start_hz, stop_hz), **settings.bandwidth_ratio
        )
        counts = percept_lengths(ratio, settings)

    if pipeline_logger is not None:
        pipeline_logger.log_event("percepts", "summary", {
            "n_bouts": len(counts),
            "mean_ratio": float(np.mean(ratio.data)) if ratio.data.size else 0.0,
        })
        pipeline_logger.finalize()

    if not intermediate_results:
        return PipelineResult(
            percepts=PerceptStatistics(ratio=ratio, counts=counts),
            primary_source=spmask,
        )

    return PipelineResult(
        percepts=PerceptStatistics(ratio=ratio, counts=counts, sband=sband, tband=tband),
        primary_source=spmask,
        sources=TrackingResult(tracks=tracks, track_lp=track_lp, adaptation=track_lp_at.state),
        cohere=C,
        cortical=csat,
        cortical_clean=csclean,
        spect=spectat,
        input=spect,
    )
