"""
Cortical scale and rate decompositions.

Scales filter each spectrogram frame along log-frequency (cycles/octave),
rates filter each channel along time (Hz). Both filter banks are applied in
the Fourier domain with zero padding, one-sided so the outputs are complex
(magnitude = envelope, angle = phase). The sign of a rate selects the
temporal-frequency half-plane, i.e. the sweep direction.

Inverses sum each band against its conjugate filter and divide by the summed
filter power, ignoring bins where the bank has no energy.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np
from scipy import fft as sp_fft

from .errors import AxisContractError, ConfigurationError
from .frontend import channels_per_octave
from .instrumentation import ProgressObserver, resolve_progress
from .models import FREQ, RATE, SCALE, TIME, TaggedArray

logger = logging.getLogger(__name__)

# bins whose summed filter power is below this fraction of the peak are dropped
_INVERSE_FLOOR = 1e-3


def _bandpass(freqs: np.ndarray, center: float) -> np.ndarray:
    """Gammatone-like band-pass ``(f/c)^2 exp(1 - (f/c)^2)`` on ``f >= 0``."""
    r = np.where(freqs > 0, freqs / abs(center), 0.0)
    return r ** 2 * np.exp(1.0 - r ** 2)


def scale_filters(n_freq: int, cpo: float, scales: Sequence[float]) -> np.ndarray:
    """Filters ``(scale, nfft)`` over the padded log-frequency axis."""
    nfft = 2 * n_freq
    omega = sp_fft.fftfreq(nfft, d=1.0 / cpo)      # cycles / octave
    H = np.zeros((len(scales), nfft))
    for i, s in enumerate(scales):
        if s <= 0:
            raise ConfigurationError(f"Cortical scales must be positive, got {s}")
        H[i] = 2.0 * _bandpass(omega, s)
    return H


def rate_filters(n_time: int, dt: float, rates: Sequence[float]) -> np.ndarray:
    """Filters ``(rate, nfft)`` over the padded time axis."""
    nfft = 2 * n_time
    w = sp_fft.fftfreq(nfft, d=dt)                  # Hz
    H = np.zeros((len(rates), nfft))
    for i, r in enumerate(rates):
        if r == 0:
            raise ConfigurationError("Cortical rates must be non-zero")
        H[i] = 2.0 * _bandpass(np.sign(r) * w, r)
    return H


def _normalized_inverse(Y: np.ndarray, H: np.ndarray, band_axis: int, fft_axis: int) -> np.ndarray:
    shape = [1] * Y.ndim
    shape[band_axis] = H.shape[0]
    shape[fft_axis] = H.shape[1]
    Hb = H.reshape(shape)
    power = np.sum(np.abs(H) ** 2, axis=0)
    keep = power > _INVERSE_FLOOR * power.max()
    gain = np.where(keep, 1.0 / np.where(keep, power, 1.0), 0.0)
    gshape = [1] * (Y.ndim - 1)
    gshape[fft_axis - (1 if fft_axis > band_axis else 0)] = H.shape[1]
    return np.sum(Y * np.conj(Hb), axis=band_axis) * gain.reshape(gshape)


def cortical_scales(
    spect: TaggedArray,
    scales: Sequence[float] = (0.5, 1.0, 2.0, 4.0),
    *,
    progress: Optional[ProgressObserver] = None,
) -> TaggedArray:
    """``(time, freq)`` spectrogram -> complex ``(time, scale, freq)``."""
    if spect.axes != (TIME, FREQ):
        raise AxisContractError(f"cortical_scales expects axes (time, freq), got {spect.axes}")
    progress = resolve_progress(progress)
    progress.start("Cortical Scales", 1)

    scales = [float(s) for s in scales]
    n_time, n_freq = spect.shape
    cpo = channels_per_octave(spect)
    H = scale_filters(n_freq, cpo, scales)
    X = sp_fft.fft(np.asarray(spect.data), n=2 * n_freq, axis=1)
    out = sp_fft.ifft(X[:, np.newaxis, :] * H[np.newaxis], axis=2)[..., :n_freq]

    progress.advance("Cortical Scales", 0)
    progress.finish("Cortical Scales")

    meta: Dict[str, Any] = dict(spect.meta or {})
    meta.update(scales=scales, channels_per_octave=cpo)
    coords = {SCALE: np.asarray(scales)}
    if FREQ in spect.coords:
        coords[FREQ] = np.asarray(spect.coords[FREQ])
    return TaggedArray(data=out, axes=(TIME, SCALE, FREQ), coords=coords, dt=spect.dt, meta=meta)


def cortical_rates(
    cs: TaggedArray,
    rates: Sequence[float] = (-8.0, -4.0, -2.0, 2.0, 4.0, 8.0),
    freq_limits_Hz: Optional[Sequence[float]] = None,
    *,
    progress: Optional[ProgressObserver] = None,
) -> TaggedArray:
    """``(time, scale, freq)`` -> complex ``(time, rate, scale, freq)``."""
    if cs.axes != (TIME, SCALE, FREQ):
        raise AxisContractError(f"cortical_rates expects axes (time, scale, freq), got {cs.axes}")
    if not cs.hastimes():
        raise AxisContractError("cortical_rates needs a frame period")
    if freq_limits_Hz is not None:
        lo, hi = (float(v) for v in freq_limits_Hz)
        cs = cs.band(FREQ, lo, hi)

    progress = resolve_progress(progress)
    progress.start("Cortical Rates", 1)

    rates = [float(r) for r in rates]
    n_time = cs.size(TIME)
    H = rate_filters(n_time, cs.dt, rates)
    X = sp_fft.fft(np.asarray(cs.data), n=2 * n_time, axis=0)
    out = sp_fft.ifft(X[np.newaxis] * H[:, :, np.newaxis, np.newaxis], axis=1)[:, :n_time]
    out = np.moveaxis(out, 0, 1)

    progress.advance("Cortical Rates", 0)
    progress.finish("Cortical Rates")

    meta: Dict[str, Any] = dict(cs.meta or {})
    meta.update(rates=rates, freq_limits_Hz=list(freq_limits_Hz) if freq_limits_Hz is not None else None)
    coords = {k: v for k, v in cs.coords.items() if k != TIME}
    coords[RATE] = np.asarray(rates)
    return TaggedArray(data=out, axes=(TIME, RATE, SCALE, FREQ), coords=coords, dt=cs.dt, meta=meta)


def inverse_rates(cr: TaggedArray) -> TaggedArray:
    """``(time, rate, scale, freq)`` -> complex ``(time, scale, freq)``."""
    if cr.axes != (TIME, RATE, SCALE, FREQ):
        raise AxisContractError(f"inverse_rates expects axes (time, rate, scale, freq), got {cr.axes}")
    n_time = cr.size(TIME)
    H = rate_filters(n_time, cr.dt, cr.axis_values(RATE))
    Y = sp_fft.fft(np.asarray(cr.data), n=2 * n_time, axis=0)
    X = _normalized_inverse(Y, H, band_axis=1, fft_axis=0)
    out = sp_fft.ifft(X, axis=0)[:n_time]
    coords = {k: v for k, v in cr.coords.items() if k not in (TIME, RATE)}
    return TaggedArray(data=out, axes=(TIME, SCALE, FREQ), coords=coords, dt=cr.dt, meta=cr.meta)


def inverse_scales(cs: TaggedArray) -> TaggedArray:
    """``(time, scale, freq)`` -> non-negative ``(time, freq)`` spectrogram."""
    if cs.axes != (TIME, SCALE, FREQ):
        raise AxisContractError(f"inverse_scales expects axes (time, scale, freq), got {cs.axes}")
    n_freq = cs.size(FREQ)
    H = scale_filters(n_freq, channels_per_octave(cs), cs.axis_values(SCALE))
    Y = sp_fft.fft(np.asarray(cs.data), n=2 * n_freq, axis=2)
    X = _normalized_inverse(Y, H, band_axis=1, fft_axis=2)
    # one-sided bank: the real part carries half the band
    out = 2.0 * np.real(sp_fft.ifft(X, axis=1))[:, :n_freq]
    coords = {k: v for k, v in cs.coords.items() if k not in (TIME, SCALE)}
    return TaggedArray(data=np.maximum(out, 0.0), axes=(TIME, FREQ), coords=coords, dt=cs.dt, meta=cs.meta)


def cortical_to_spect(x: TaggedArray) -> TaggedArray:
    """Project a cortical array (rates and/or scales) back to a spectrogram."""
    if x.has_axis(RATE):
        x = inverse_rates(x)
    if x.has_axis(SCALE):
        return inverse_scales(x)
    raise AxisContractError(f"cortical_to_spect expects a scale axis, got {x.axes}")
