"""Exception types raised by the experimentation core.

Too little data is never an exception: analyses return a result whose
``status`` is ``insufficient-data``.
"""


class ExperimentationError(Exception):
    """Base class for experimentation core errors."""


class NotFound(ExperimentationError, LookupError):
    """Unknown experiment, variant or allocator."""


class ExperimentNotActive(ExperimentationError):
    """Event tracking or allocation attempted on a stopped experiment."""


class InvalidConfiguration(ExperimentationError, ValueError):
    """Structurally invalid input, e.g. weights not summing to 100."""
