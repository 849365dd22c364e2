"""
Error taxonomy for the tailoring pipeline.

Every error carries the HTTP status the API should answer with and a message
that is safe to show to the user. Anything that is not a TailorError is
reported as a generic processing failure by the endpoints.
"""


class TailorError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(TailorError):
    """Missing/oversized document, wrong file type, bad job description or form field."""

    status_code = 400


class MalformedPackage(TailorError):
    """The upload is not a readable DOCX or its body markup cannot be parsed."""

    status_code = 422


class NoContentFound(TailorError):
    """The body markup has no text at all."""

    status_code = 422


class InvalidAIResponse(TailorError):
    """The model answered, but not with the JSON structure we asked for."""

    status_code = 502


class CollaboratorUnavailable(TailorError):
    """The model could not be reached, is not configured, or timed out."""

    status_code = 503


class StructuralCorruption(TailorError):
    # Never reaches the caller: the pipeline reverts to the original markup.
    status_code = 500
