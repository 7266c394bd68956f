import numpy as np
import pytest
import soundfile as sf

from auditory_bistability.pipeline.config import BistableSettings
from auditory_bistability.pipeline.config_loader import read_params
from auditory_bistability.pipeline.cortical import (
    cortical_rates,
    cortical_scales,
    cortical_to_spect,
    inverse_rates,
    inverse_scales,
)
from auditory_bistability.pipeline.errors import AxisContractError, ConfigurationError
from auditory_bistability.pipeline.frontend import (
    aba_stimulus,
    as_spectrogram,
    audiospect,
    channel_frequencies,
    channels_per_octave,
    load_audio,
)
from auditory_bistability.pipeline.models import FREQ, RATE, SCALE, TIME, TaggedArray
from auditory_bistability.tests.signal_utils import generate_tone_spect


@pytest.fixture
def stimulus_settings():
    s = BistableSettings()
    s.stimulus.update(sample_rate=8000, repeats=3, tone_length_ms=50.0, ramp_ms=5.0)
    return s


def test_aba_stimulus_layout(stimulus_settings):
    params = read_params()
    audio, sr = aba_stimulus(params, stimulus_settings)
    onset = int(round(0.12 * sr))
    n_tone = int(round(0.05 * sr))
    assert sr == 8000
    assert audio.shape == (3 * 4 * onset + n_tone,)
    # fourth slot of every repetition is silent
    for r in range(3):
        start = r * 4 * onset
        assert not np.any(audio[start + 3 * onset:start + 4 * onset])
        assert np.any(audio[start:start + n_tone])


def test_aba_stimulus_tone_frequencies(stimulus_settings):
    params = read_params(None, overrides={"delta_f": 12})
    audio, sr = aba_stimulus(params, stimulus_settings)
    onset = int(round(0.12 * sr))
    n_tone = int(round(0.05 * sr))
    for slot, expected in ((0, 500.0), (1, 1000.0)):
        segment = audio[slot * onset:slot * onset + n_tone]
        spectrum = np.abs(np.fft.rfft(segment, n=8 * n_tone))
        peak = np.fft.rfftfreq(8 * n_tone, 1.0 / sr)[np.argmax(spectrum)]
        assert peak == pytest.approx(expected, rel=0.03)


def test_aba_stimulus_above_nyquist(stimulus_settings):
    params = read_params(None, overrides={"f": "3.5kHz"})
    with pytest.raises(ConfigurationError):
        aba_stimulus(params, stimulus_settings)


def test_channel_frequencies():
    freqs = channel_frequencies(100.0, 800.0, 12)
    assert freqs.size == 37
    assert freqs[0] == pytest.approx(100.0)
    assert freqs[-1] == pytest.approx(800.0)
    with pytest.raises(ConfigurationError):
        channel_frequencies(0.0, 800.0, 12)


def test_audiospect_of_sine_peaks_at_tone():
    sr = 8000
    t = np.arange(sr) / sr
    spect = audiospect(np.sin(2 * np.pi * 1000.0 * t), sr, frame_ms=10.0, channels_per_octave=12)
    assert spect.axes == (TIME, FREQ)
    assert spect.dt == pytest.approx(0.01)
    assert np.max(spect.data) == pytest.approx(1.0)
    assert np.all(spect.data >= 0)
    peak = spect.axis_values(FREQ)[np.argmax(spect.data.mean(axis=0))]
    assert abs(np.log2(peak / 1000.0)) <= 1.0 / 12
    assert channels_per_octave(spect) == 12


def test_audiospect_rejects_empty_audio():
    with pytest.raises(ValueError):
        audiospect(np.zeros(0), 8000)


def test_load_audio_resamples(tmp_path):
    path = tmp_path / "tone.wav"
    sr = 8000
    t = np.arange(sr) / sr
    sf.write(str(path), 0.3 * np.sin(2 * np.pi * 440.0 * t), sr)
    audio = load_audio(str(path), 4000)
    assert audio.ndim == 1
    assert abs(audio.size - 4000) <= 2


def test_as_spectrogram_passes_spectrograms_through():
    spect = generate_tone_spect()
    assert as_spectrogram(spect, BistableSettings()) is spect
    with pytest.raises(ConfigurationError):
        as_spectrogram(TaggedArray(data=np.ones((4, 3)), axes=(FREQ, TIME), dt=0.01), BistableSettings())


def test_cortical_scales_shape_and_inverse_peak():
    spect = generate_tone_spect(n_time=20, n_freq=24, channel=8)
    cs = cortical_scales(spect, scales=[0.5, 1.0, 2.0, 4.0])
    assert cs.axes == (TIME, SCALE, FREQ)
    assert cs.shape == (20, 4, 24)
    assert np.iscomplexobj(cs.data)
    np.testing.assert_allclose(cs.axis_values(SCALE), [0.5, 1.0, 2.0, 4.0])

    back = inverse_scales(cs)
    assert back.axes == (TIME, FREQ)
    assert np.all(back.data >= 0)
    assert np.all(np.argmax(back.data, axis=1) == 8)


def test_cortical_rates_restricts_band():
    spect = generate_tone_spect(n_time=64, n_freq=36, channel=12)
    cs = cortical_scales(spect, scales=[1.0, 2.0])
    cr = cortical_rates(cs, rates=[-4.0, 4.0], freq_limits_Hz=[150.0, 600.0])
    freqs = cr.axis_values(FREQ)
    assert cr.axes == (TIME, RATE, SCALE, FREQ)
    assert np.all((freqs >= 150.0) & (freqs <= 600.0))
    assert cr.shape == (64, 2, 2, freqs.size)
    np.testing.assert_allclose(cr.axis_values(RATE), [-4.0, 4.0])

    cs_back = inverse_rates(cr)
    assert cs_back.axes == (TIME, SCALE, FREQ)
    assert cs_back.shape == (64, 2, freqs.size)
    sp = cortical_to_spect(cr)
    assert sp.axes == (TIME, FREQ)
    assert np.all(np.isfinite(sp.data))
    assert np.all(sp.data >= 0)


def test_cortical_rates_band_outside_channels():
    cs = cortical_scales(generate_tone_spect(), scales=[1.0])
    with pytest.raises(ConfigurationError):
        cortical_rates(cs, rates=[4.0], freq_limits_Hz=[5000.0, 6000.0])


def test_cortical_rejects_zero_rate_and_bad_axes():
    cs = cortical_scales(generate_tone_spect(), scales=[1.0])
    with pytest.raises(ConfigurationError):
        cortical_rates(cs, rates=[0.0])
    with pytest.raises(AxisContractError):
        cortical_scales(cs)
    with pytest.raises(AxisContractError):
        cortical_to_spect(generate_tone_spect())
