import numpy as np
import pytest

from auditory_bistability.pipeline.cohere import cohere
from auditory_bistability.pipeline.errors import (
    AxisContractError,
    ComponentSelectionError,
    ConfigurationError,
    DimensionMismatchError,
)
from auditory_bistability.pipeline.models import (
    COMPONENT,
    FREQ,
    SCALE,
    TIME,
    TRACK,
    Coherence,
    CoherenceParams,
    TaggedArray,
)
from auditory_bistability.pipeline.percepts import bandwidth_ratio, percept_lengths
from auditory_bistability.pipeline.tracking import PriorTracker, mask_tracks, primary_component, track
from auditory_bistability.tests.signal_utils import generate_tone_spect, make_cortical, make_scales


def _coherence(data):
    params = CoherenceParams.build(None, ncomponents=data.shape[-1], window=5.0, delta=2.5, method="mean")
    return Coherence(data=data, axes=(TIME, SCALE, FREQ, COMPONENT), dt=2.5, meta=params)


def test_track_shapes_and_first_window():
    x = make_cortical((40, 2, 3, 4), dt=0.5, seed=2)
    C = cohere(x, CoherenceParams.build(x, ncomponents=2, window=5.0, delta=2.5, method="nmf", maxiter=30))
    tracks, track_lp = track(C, priors_s=[0.5, 4.0, 10.0])
    assert len(tracks) == 3
    for t in tracks:
        assert t.shape == C.shape
        assert t.axes == C.axes
        assert t.params is C.params
    assert track_lp.axes == (TIME, TRACK)
    assert track_lp.shape == (C.size(TIME), 3)
    np.testing.assert_allclose(track_lp.times, C.times)
    np.testing.assert_array_equal(track_lp.data[0], 0.0)
    assert np.all(np.isfinite(track_lp.data))
    assert np.all(track_lp.data <= 0)


def test_track_orders_components_by_energy():
    rng = np.random.default_rng(0)
    C = _coherence(rng.random((6, 2, 3, 3)))
    tracks, _ = track(C, priors_s=[1.0])
    energy = tracks[0].data.sum(axis=(1, 2))
    assert np.all(np.diff(energy, axis=1) <= 1e-12)


def test_tracker_assignment_undoes_swaps():
    tracker = PriorTracker(tau=1.0, dt=0.25, sigma=0.25)
    first = np.array([[1.0, 0.0], [0.0, 1.0], [0.5, 0.0]])
    tracker.step(first)
    swapped = first[:, ::-1]
    np.testing.assert_array_equal(tracker._assign(swapped), first)
    _, lp = tracker.step(swapped)
    assert lp == pytest.approx(0.0)


def test_track_validation():
    C = _coherence(np.ones((4, 1, 2, 2)))
    with pytest.raises(ConfigurationError):
        track(C, method="kalman")
    with pytest.raises(ConfigurationError):
        track(C, priors_s=[])
    with pytest.raises(ConfigurationError):
        track(C, priors_s=[0.0])
    with pytest.raises(AxisContractError):
        track(make_cortical((10, 1, 1, 1), dt=0.5))


def test_primary_component_follows_most_probable_track():
    a = _coherence(np.stack([np.full((7, 1, 2), 1.0), np.full((7, 1, 2), 0.1)], axis=-1))
    b = _coherence(np.stack([np.full((7, 1, 2), 2.0), np.full((7, 1, 2), 0.2)], axis=-1))
    lp_data = np.zeros((7, 2))
    lp_data[:, 1] = -1.0
    lp_data[3:, 0] = -2.0
    lp = TaggedArray(data=lp_data, axes=(TIME, TRACK), dt=2.5)

    picked = primary_component([a, b], lp, order=1)
    assert picked.shape == (7, 1, 2, 1)
    np.testing.assert_allclose(picked.data[:3, ..., 0], 1.0)
    np.testing.assert_allclose(picked.data[3:, ..., 0], 2.0)
    np.testing.assert_array_equal(picked.axis_values(COMPONENT), [1])

    second = primary_component([a, b], lp, order=2)
    np.testing.assert_allclose(second.data[:3, ..., 0], 0.1)

    with pytest.raises(ComponentSelectionError):
        primary_component([a, b], lp, order=3)
    with pytest.raises(DimensionMismatchError):
        primary_component([a], lp)


def test_mask_tracks_matches_reference_layout():
    data = np.stack([np.ones((7, 3, 4)), 0.5 * np.ones((7, 3, 4))], axis=-1)
    tracks = [_coherence(data), _coherence(data)]
    lp = TaggedArray(data=np.zeros((7, 2)), axes=(TIME, TRACK), dt=2.5)
    reference = make_scales((40, 3, 4), dt=0.5)
    out = mask_tracks(reference, tracks, lp)
    assert out.axes == reference.axes
    np.testing.assert_allclose(np.abs(out.data), 1.0)


def test_bandwidth_ratio_of_scene_with_itself():
    spect = generate_tone_spect(n_time=100, n_freq=24, channel=8, dt=0.125)
    ratio, sband, tband = bandwidth_ratio(spect, spect, threshold=0.25, window_ms=500.0, delta_ms=250.0)
    assert ratio.axes == (TIME,)
    assert ratio.size(TIME) == 49
    np.testing.assert_allclose(ratio.data, 1.0)
    np.testing.assert_allclose(tband.data, 1.0 / 12)
    np.testing.assert_allclose(sband.data, tband.data)
    assert ratio.dt == pytest.approx(0.25)


def test_bandwidth_ratio_of_silent_source_is_zero():
    spect = generate_tone_spect(n_time=50, dt=0.125)
    silent = spect.with_data(np.zeros(spect.shape))
    ratio, sband, _ = bandwidth_ratio(silent, spect, window_ms=250.0, delta_ms=250.0)
    np.testing.assert_allclose(ratio.data, 0.0)
    np.testing.assert_allclose(sband.data, 0.0)


def test_bandwidth_ratio_without_scene_is_zero():
    spect = generate_tone_spect(n_time=50, dt=0.125)
    silent = spect.with_data(np.zeros(spect.shape))
    ratio, _, tband = bandwidth_ratio(silent, silent, window_ms=250.0, delta_ms=250.0)
    np.testing.assert_allclose(ratio.data, 0.0)
    np.testing.assert_allclose(tband.data, 0.0)


def test_bandwidth_ratio_shape_mismatch():
    spect = generate_tone_spect(n_time=50, n_freq=24)
    other = generate_tone_spect(n_time=50, n_freq=20)
    with pytest.raises(DimensionMismatchError):
        bandwidth_ratio(other, spect)


def test_percept_lengths_bouts():
    ratio = TaggedArray(data=np.array([0.9, 0.9, 0.1, 0.1, 0.1, 0.9]), axes=(TIME,), dt=0.25)
    counts = percept_lengths(ratio, {"threshold": 0.75, "min_length_ms": 250.0})
    np.testing.assert_allclose(counts.lengths, [0.5, 0.75, 0.25])
    np.testing.assert_array_equal(counts.fused, [True, False, True])
    assert len(counts) == 3


def test_percept_lengths_absorbs_short_bouts():
    ratio = TaggedArray(data=np.array([0.9, 0.9, 0.1, 0.1, 0.1, 0.9]), axes=(TIME,), dt=0.25)
    counts = percept_lengths(ratio, {"threshold": 0.75, "min_length_ms": 600.0})
    np.testing.assert_allclose(counts.lengths, [0.5, 1.0])
    np.testing.assert_array_equal(counts.fused, [True, False])
    assert counts.lengths.sum() == pytest.approx(1.5)


def test_percept_lengths_empty_ratio():
    ratio = TaggedArray(data=np.zeros(0), axes=(TIME,), dt=0.25)
    counts = percept_lengths(ratio)
    assert len(counts) == 0
    assert counts.fused.dtype == bool
