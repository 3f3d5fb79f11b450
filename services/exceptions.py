"""Exceptions raised by the transcript analysis pipeline.

Each exception carries the HTTP status the router responds with.
"""


class PipelineError(Exception):
    """Base class for failures that end a transcript analysis request."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputValidationError(PipelineError):
    """The submission is missing a required field or carries a malformed one."""

    status_code = 400


class ExtractionUnavailableError(PipelineError):
    """The language model could not be reached within the retry budget."""

    status_code = 502


class UnrepairableOutputError(PipelineError):
    """The model output could not be parsed as JSON, even after repair."""

    status_code = 502


class PersistenceError(PipelineError):
    """A write the pipeline cannot continue without failed.

    Writes that succeeded before the failure stay committed, so the meeting
    may partially exist.
    """

    status_code = 500
