"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class DepotPackerError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(DepotPackerError):
    """Raised for issues related to configuration loading or validation."""


class QueueStateError(DepotPackerError):
    """Raised when a queue operation is not allowed in the current queue state."""


class QueueBusyError(QueueStateError):
    """Raised when an operation requires an idle queue but a job is running."""


class QueueIdleError(QueueStateError):
    """Raised when an operation requires a running job but none is running."""


class NoQueuedJobsError(QueueStateError):
    """Raised when the queue is started with no job in the queued state."""


class RunnerInvocationError(DepotPackerError):
    """
    Raised when a request to the external runner (start, cancel, submit code,
    resolve conflict) fails or the runner is unavailable.
    """


class ChallengeError(DepotPackerError):
    """Raised for invalid responses to a login challenge (e.g. an empty email code)."""


class ConflictError(DepotPackerError):
    """Raised when an output conflict cannot be resolved as requested."""


class LoginStoreError(DepotPackerError):
    """Raised when saved login data cannot be read, written or decoded."""


class TemplateError(DepotPackerError):
    """Base exception for template loading and rendering errors."""


class InvalidTemplateError(TemplateError):
    """Raised when a template payload is malformed."""


class TemplateValidationError(TemplateError):
    """
    Raised when a template cannot be rendered against the given metadata.
    Rendering never returns partial output alongside this error.
    """


class NoMetadataError(TemplateValidationError):
    """Raised when there is no job metadata to render against."""


class UnsupportedFieldError(TemplateValidationError):
    """Raised when a template references placeholders outside the allowed set."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Unsupported field(s): {', '.join(fields)}")


class NoDepotsError(TemplateValidationError):
    """Raised when a depot list block is rendered without any depots."""


class DepotLimitError(TemplateValidationError):
    """Raised when the depot count exceeds the renderable limit."""


class OutputLengthError(TemplateValidationError):
    """Raised when the rendered output exceeds the maximum length."""


class FinalizationError(DepotPackerError):
    """Raised when a finished download cannot be turned into the final output."""
