"""Custom exceptions for the emission factor matcher."""


class PipelineError(Exception):
    """Base exception for pipeline errors. Raise this instead of sys.exit(1)."""
    pass


class ResponseFormatError(PipelineError):
    """Model reply could not be turned into a label array.

    ``kind`` is one of ``parse_error``, ``invalid_format``, ``no_matches``
    or ``empty_matches``.
    """

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
