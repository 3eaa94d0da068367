"""
Error taxonomy for the step autoscaler.

Only ConfigurationError is fatal, and only at startup. Everything else is a
per-tick condition that is logged and absorbed by the control loop.
"""


class AutoscalerError(Exception):
    """Base class for all autoscaler errors."""


class InvalidSample(AutoscalerError):
    """A metric reading was malformed (non-numeric or non-finite)."""


class SourceUnavailable(AutoscalerError):
    """No fresh metric reading exists within the staleness budget."""


class RecoverableError(AutoscalerError):
    """Applying a desired capacity failed; the controller retries next tick."""


class ConfigurationError(AutoscalerError):
    """The scaling parameters are inconsistent. The controller refuses to run."""
