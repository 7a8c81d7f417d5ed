"""
Exception hierarchy for the drip scheduler.

Validation and not-found errors surface to operators through the API.
Configuration and delivery errors are recorded on the affected job and
never abort sibling jobs.
"""


class DriplineError(Exception):
    """Base class for all scheduler errors."""

    def __init__(self, message: str = "Drip scheduler error"):
        super().__init__(message)
        self.message = message


class CatalogValidationError(DriplineError):
    """Rejected authoring input (bad sequence, step or reorder payload)."""


class StepValidationError(CatalogValidationError):
    """A step violates the delay or channel-content invariants."""


class NotFoundError(DriplineError):
    """Requested sequence, step or job does not exist."""


class ConfigurationError(DriplineError):
    """A tenant is missing configuration required to deliver a job."""


class DeliveryError(DriplineError):
    """A provider rejected a message."""

    transient = False


class TransientDeliveryError(DeliveryError):
    """Provider timeout, throttling or 5xx. Still terminal for the job."""

    transient = True
