class PipelineError(Exception):
    """Base class for every failure raised by the letters pipeline."""


class ConfigurationError(PipelineError):
    """Bad parameters: K < 2, empty keyword list, threshold too aggressive..."""


class DataError(PipelineError):
    """Input data is missing, unreadable or lacks required fields."""


class ModelError(PipelineError):
    """The estimator did not produce a usable fit."""


class RenderError(PipelineError):
    """A chart request references a topic or covariate that does not exist."""
