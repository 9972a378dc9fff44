"""Error taxonomy for ingestion and question answering.

Every error carries a short, human-readable message that is safe to show to
the caller. ``retryable`` tells a scheduler or client whether repeating the
same operation later can succeed.
"""


class DocQAError(Exception):
    """Base class for all domain errors."""

    code = "internal_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DocQAError):
    """Missing or invalid question or upload input."""

    code = "validation_error"


class UnsupportedFormatError(DocQAError):
    """Document type cannot be parsed."""

    code = "unsupported_format"


class ParsingError(DocQAError):
    """Text extraction failed."""

    code = "parsing_error"


class ServiceConnectionError(DocQAError):
    """Embedding or generation service unreachable or timed out."""

    code = "service_unavailable"
    retryable = True


class GenerationError(DocQAError):
    """Service reachable but returned an unusable response."""

    code = "generation_error"


class NotFoundError(DocQAError):
    """No retrievable passages, or a referenced entity does not exist."""

    code = "not_found"


class InvalidTransitionError(DocQAError):
    """A status change not allowed by the lifecycle."""

    code = "invalid_transition"


class InternalError(DocQAError):
    """Anything unclassified."""

    code = "internal_error"
