import numpy as np
import pytest

from auditory_bistability.pipeline.bistable import apply_bistable, inhibition_weights
from auditory_bistability.pipeline.config import ModelParams
from auditory_bistability.pipeline.config_loader import read_params
from auditory_bistability.pipeline.errors import AxisContractError, ConfigurationError
from auditory_bistability.pipeline.models import FREQ, SCALE, TIME, TRACK, TaggedArray


def _spect(n_time=200, n_freq=6, seed=0, dt=0.01):
    rng = np.random.default_rng(seed)
    return TaggedArray(data=rng.random((n_time, n_freq)), axes=(TIME, FREQ), dt=dt)


def test_same_seed_is_bit_identical():
    params = read_params()
    x = _spect()
    a = apply_bistable(x, "freqs", params, seed=4, c_sigma=0.3)
    b = apply_bistable(x, "freqs", params, seed=4, c_sigma=0.3)
    np.testing.assert_array_equal(a.result.data, b.result.data)


def test_different_seed_changes_noise():
    params = read_params()
    x = _spect()
    a = apply_bistable(x, "freqs", params, seed=1, c_sigma=0.3)
    b = apply_bistable(x, "freqs", params, seed=2, c_sigma=0.3)
    assert not np.array_equal(a.result.data, b.result.data)


def test_result_keeps_layout_and_is_non_negative():
    params = read_params()
    x = _spect()
    out = apply_bistable(x, "freqs", params).result
    assert out.axes == x.axes
    assert out.shape == x.shape
    assert out.dt == x.dt
    assert np.all(out.data >= 0)
    assert np.all(np.isfinite(out.data))


def test_constant_input_adapts_to_steady_state():
    params = read_params(None, overrides={"f_tau_a": "500ms", "f_tau_x": "10ms"})
    x = TaggedArray(data=np.ones((2000, 1)), axes=(TIME, FREQ), dt=0.01)
    y = apply_bistable(x, "freqs", params, c_sigma=0.0, c_a=1.0, c_m=0.0).result.data[:, 0]
    assert y.max() > 0.8
    assert y[-1] == pytest.approx(0.5, abs=1e-3)


def test_mutual_inhibition_suppresses_weaker_unit():
    params = read_params()
    data = np.zeros((300, 2))
    data[:, 0] = 1.0
    data[:, 1] = 0.6
    x = TaggedArray(data=data, axes=(TIME, FREQ), dt=0.01)
    alone = apply_bistable(x, "freqs", params, c_sigma=0.0, c_a=0.0, c_m=0.0).result.data
    inhibited = apply_bistable(x, "freqs", params, c_sigma=0.0, c_a=0.0, c_m=0.8, W_m_sigma=0.0).result.data
    assert inhibited[-1, 1] < alone[-1, 1]
    assert inhibited[-1, 1] / inhibited[-1, 0] < alone[-1, 1] / alone[-1, 0]


def test_complex_input_keeps_phase():
    params = read_params()
    rng = np.random.default_rng(3)
    phase = rng.uniform(-np.pi, np.pi, (100, 3, 4))
    data = rng.uniform(0.5, 1.0, (100, 3, 4)) * np.exp(1j * phase)
    x = TaggedArray(data=data, axes=(TIME, SCALE, FREQ), dt=0.01)
    out = apply_bistable(x, "scales", params, c_sigma=0.0).result.data
    nonzero = np.abs(out) > 1e-9
    assert np.any(nonzero)
    np.testing.assert_allclose(np.angle(out[nonzero]), phase[nonzero])


def test_track_axis_returns_log_probabilities():
    params = read_params()
    rng = np.random.default_rng(8)
    lp = TaggedArray(data=-rng.random((30, 3)) * 5, axes=(TIME, TRACK), dt=0.25)
    out = apply_bistable(lp, "track", params).result.data
    np.testing.assert_allclose(np.exp(out).sum(axis=1), 1.0)
    assert np.all(out <= 0)


def test_intermediate_results_keep_state():
    params = read_params()
    x = _spect(n_time=50)
    with_state = apply_bistable(x, "freqs", params, intermediate_results=True)
    without = apply_bistable(x, "freqs", params)
    assert without.state is None
    for traj in (with_state.state.adaptation, with_state.state.inhibition, with_state.state.noise):
        assert traj.shape == x.shape
    np.testing.assert_array_equal(with_state.result.data, without.result.data)


def test_invalid_axis_and_params():
    x = _spect(n_time=10)
    with pytest.raises(ConfigurationError):
        apply_bistable(x, "rates", read_params())
    with pytest.raises(ConfigurationError):
        apply_bistable(x, "freqs", ModelParams())


def test_time_must_be_first_axis():
    x = TaggedArray(data=np.ones((4, 10)), axes=(FREQ, TIME), dt=0.01)
    with pytest.raises(AxisContractError):
        apply_bistable(x, "freqs", read_params())


def test_inhibition_weights():
    W = inhibition_weights(5, 1.0)
    np.testing.assert_allclose(np.diag(W), 0.0)
    np.testing.assert_allclose(W.sum(axis=1), 1.0)
    assert W[2, 1] > W[2, 0]
    flat = inhibition_weights(3, 0.0)
    np.testing.assert_allclose(flat, (np.ones((3, 3)) - np.eye(3)) / 2.0)
    assert inhibition_weights(1, 1.0).shape == (1, 1)
    assert not np.any(inhibition_weights(1, 1.0))
