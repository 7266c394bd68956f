"""Stage modules of the bistable streaming model.

The public entry point is :func:`bistable_model`; the remaining names are
the building blocks it chains together.
"""

from .cohere import cohere, component, component_means, components, mask, mask_weights, ncomponents
from .config import BistableSettings, ModelParams, Quantity, check_params, parse_quantity
from .config_loader import read_params, read_settings
from .errors import (
    AxisContractError,
    ComponentSelectionError,
    ConfigurationError,
    DimensionMismatchError,
    ExtractionError,
    ModelError,
    UnknownSettingsKeyError,
)
from .instrumentation import NULL_PROGRESS, LoggingProgress, PipelineLogger, ProgressObserver
from .methods import METHODS, CoherenceMethod, make_method, register_method
from .model import bistable_model
from .models import Coherence, CoherenceParams, PipelineResult, TaggedArray, WindowedSignal
from .validation import validate_result
from .windowing import frame_length, map_windowing, window_length, windowing
