"""Exception hierarchy shared by the pipeline stages."""
from __future__ import annotations


class ModelError(Exception):
    """Base class for all model failures."""


class ConfigurationError(ModelError, ValueError):
    """Missing or mis-tagged parameters, invalid settings values."""


class UnknownSettingsKeyError(ConfigurationError):
    """Raised when a settings key is not present in the schema."""


class AxisContractError(ModelError, AssertionError):
    """A stage received an array whose axes violate its contract."""


class DimensionMismatchError(AxisContractError):
    """Array extents disagree between two stages."""


class ComponentSelectionError(ModelError, ValueError):
    """An operation needs exactly one coherence component."""


class ExtractionError(ModelError, RuntimeError):
    """A component extraction method failed to produce a finite result."""
