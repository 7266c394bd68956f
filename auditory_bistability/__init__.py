"""Model of bistable auditory streaming built on temporal coherence."""

from .pipeline import (
    BistableSettings,
    ModelParams,
    bistable_model,
    cohere,
    component,
    mask,
    read_params,
    read_settings,
    windowing,
)

__version__ = "0.1.0"
