import sys
import warnings
from pathlib import Path

import pytest

# Ensure repository root is importable for `auditory_bistability` package resolution.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from auditory_bistability.pipeline.config import BistableSettings  # noqa: E402
from auditory_bistability.pipeline.config_loader import read_params  # noqa: E402


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)
    warnings.filterwarnings("ignore", message=".*PySoundFile failed.*")
    warnings.filterwarnings("ignore", message=".*n_fft=.*too large for input signal.*")


@pytest.fixture
def small_settings():
    """Settings small enough for a full model run in a test."""
    s = BistableSettings()
    s.stimulus.update(sample_rate=4000, repeats=4)
    s.freqs.analyze.update(n_fft=256, min_freq=200.0, max_freq=1600.0, channels_per_octave=6)
    s.scales.analyze["scales"] = [1.0, 2.0]
    s.rates.update(rates=[-4.0, 4.0], freq_limits_Hz=[250.0, 1500.0])
    s.nmf.update(window_ms=500.0, delta_ms=250.0, maxiter=30)
    s.bandwidth_ratio.update(window_ms=250.0, delta_ms=250.0)
    return s


@pytest.fixture
def default_params():
    return read_params()
