"""
Front end: stimulus synthesis, audio loading and the auditory spectrogram.

The spectrogram is a ``(time, freq)`` :class:`TaggedArray` with one frame
every ``frame_ms`` and log-spaced channels (``channels_per_octave`` between
``min_freq`` and ``max_freq``). Channel centre frequencies are stored as the
``freq`` coordinates so later stages can restrict to a band in Hz.
"""
from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, Optional, Tuple

import librosa
import numpy as np
import soundfile as sf

from .config import BistableSettings, ModelParams
from .errors import ConfigurationError
from .models import FREQ, TIME, TaggedArray

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Stimulus
# -------------------------------------------------------------------------

def _tone(freq_hz: float, n: int, sr: int, ramp: int) -> np.ndarray:
    t = np.arange(n) / float(sr)
    y = np.sin(2.0 * np.pi * freq_hz * t)
    if ramp > 0:
        ramp = min(ramp, n // 2)
        env = 0.5 - 0.5 * np.cos(np.pi * np.arange(ramp) / ramp)
        y[:ramp] *= env
        y[n - ramp:] *= env[::-1]
    return y


def aba_stimulus(params: ModelParams, settings: BistableSettings) -> Tuple[np.ndarray, int]:
    """
    Synthesize the ABA_ streaming stimulus.

    A tones at ``params.f``, B tones ``params.delta_f`` semitones above. One
    tone onset every ``params.delta_t``; each repetition is A, B, A and a
    silent slot.
    """
    stim = settings.stimulus
    sr = int(stim.get("sample_rate", 8000))
    repeats = int(stim.get("repeats", 10))
    tone_s = float(stim.get("tone_length_ms", 50.0)) / 1000.0
    ramp_s = float(stim.get("ramp_ms", 10.0)) / 1000.0
    if sr <= 0 or repeats < 1 or tone_s <= 0:
        raise ConfigurationError(
            f"Invalid stimulus settings: sample_rate={sr}, repeats={repeats}, tone_length_ms={tone_s * 1000}"
        )

    delta_t = params.seconds("delta_t")
    f_a = params.hertz("f")
    f_b = f_a * 2.0 ** (float(params.delta_f) / 12.0)
    if f_b >= sr / 2.0:
        raise ConfigurationError(f"B tone ({f_b:.1f} Hz) is above the Nyquist frequency ({sr / 2.0} Hz)")

    onset = int(round(delta_t * sr))
    n_tone = max(1, int(round(tone_s * sr)))
    n_ramp = int(round(ramp_s * sr))
    tone_a = _tone(f_a, n_tone, sr, n_ramp)
    tone_b = _tone(f_b, n_tone, sr, n_ramp)

    total = repeats * 4 * onset + n_tone
    audio = np.zeros(total, dtype=np.float64)
    for r in range(repeats):
        start = r * 4 * onset
        for slot, tone in enumerate((tone_a, tone_b, tone_a)):
            s = start + slot * onset
            audio[s:s + n_tone] += tone

    logger.info(
        "ABA stimulus: f_A=%.1f Hz, f_B=%.1f Hz, delta_t=%.3fs, %d repeats (%.2fs)",
        f_a, f_b, delta_t, repeats, total / float(sr),
    )
    return audio, sr


def load_audio(path: str, sample_rate: int) -> np.ndarray:
    """Read ``path`` as mono float audio at ``sample_rate``."""
    audio, sr = sf.read(path, dtype="float64", always_2d=True)
    audio = np.mean(audio, axis=1)
    if sr != sample_rate:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            audio = librosa.resample(audio, orig_sr=sr, target_sr=int(sample_rate))
    if audio.size == 0:
        raise ValueError(f"Audio file {path} is empty")
    return audio


# -------------------------------------------------------------------------
# Auditory spectrogram
# -------------------------------------------------------------------------

def channel_frequencies(min_freq: float, max_freq: float, channels_per_octave: int) -> np.ndarray:
    if min_freq <= 0 or max_freq <= min_freq or channels_per_octave < 1:
        raise ConfigurationError(
            f"Invalid channel layout: min_freq={min_freq}, max_freq={max_freq}, "
            f"channels_per_octave={channels_per_octave}"
        )
    n = int(np.floor(np.log2(max_freq / min_freq) * channels_per_octave)) + 1
    return min_freq * 2.0 ** (np.arange(n) / float(channels_per_octave))


def log_filterbank(sr: int, n_fft: int, centers: np.ndarray, channels_per_octave: int) -> np.ndarray:
    """Triangular weights on a log-frequency axis, one row per channel."""
    bins = librosa.fft_frequencies(sr=sr, n_fft=n_fft)
    fb = np.zeros((centers.size, bins.size))
    pos = bins > 0
    for c, fc in enumerate(centers):
        dist = np.abs(np.log2(bins[pos] / fc)) * channels_per_octave
        fb[c, pos] = np.maximum(0.0, 1.0 - dist)
    # channels narrower than the FFT resolution read their nearest bin
    empty = fb.sum(axis=1) <= 0
    for c in np.flatnonzero(empty):
        fb[c, int(np.argmin(np.abs(bins - centers[c])))] = 1.0
    return fb / fb.sum(axis=1, keepdims=True)


def audiospect(
    audio: np.ndarray,
    sample_rate: int,
    *,
    frame_ms: float = 10.0,
    n_fft: int = 512,
    min_freq: float = 100.0,
    max_freq: float = 3500.0,
    channels_per_octave: int = 12,
) -> TaggedArray:
    """Auditory spectrogram of ``audio`` with cube-root compression."""
    y = np.asarray(audio, dtype=np.float64)
    if y.ndim != 1:
        raise ValueError(f"audiospect expects mono audio, got shape {y.shape}")
    if y.size == 0:
        raise ValueError("Audio too short (empty)")

    hop = max(1, int(round(sample_rate * frame_ms / 1000.0)))
    max_freq = min(float(max_freq), sample_rate / 2.0)
    centers = channel_frequencies(float(min_freq), max_freq, int(channels_per_octave))

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        mag = np.abs(librosa.stft(y, n_fft=int(n_fft), hop_length=hop, center=True))

    fb = log_filterbank(int(sample_rate), int(n_fft), centers, int(channels_per_octave))
    spect = np.cbrt(fb @ mag).T
    peak = float(spect.max()) if spect.size else 0.0
    if peak > 0:
        spect = spect / peak

    meta: Dict[str, Any] = {
        "sample_rate": int(sample_rate),
        "hop_length": hop,
        "n_fft": int(n_fft),
        "channels_per_octave": int(channels_per_octave),
    }
    logger.debug("audiospect: %d frames x %d channels (hop=%d)", spect.shape[0], spect.shape[1], hop)
    return TaggedArray(
        data=spect,
        axes=(TIME, FREQ),
        coords={FREQ: centers},
        dt=hop / float(sample_rate),
        meta=meta,
    )


def channels_per_octave(x: TaggedArray) -> float:
    """Channel density of the ``freq`` axis, from its coordinates."""
    if isinstance(x.meta, dict) and "channels_per_octave" in x.meta:
        return float(x.meta["channels_per_octave"])
    freqs = x.axis_values(FREQ)
    if freqs.size < 2:
        return 1.0
    return float(1.0 / np.mean(np.diff(np.log2(freqs))))


def as_spectrogram(stimulus: Any, settings: BistableSettings, sample_rate: Optional[int] = None) -> TaggedArray:
    """Audio samples or an existing spectrogram as a ``(time, freq)`` array."""
    if isinstance(stimulus, TaggedArray):
        if stimulus.axes != (TIME, FREQ) or not stimulus.hastimes():
            raise ConfigurationError(f"Spectrogram input must have axes (time, freq) and a frame period, got {stimulus.axes}")
        return stimulus
    sr = int(sample_rate or settings.stimulus.get("sample_rate", 8000))
    return audiospect(np.asarray(stimulus), sr, **settings.freqs.analyze)
