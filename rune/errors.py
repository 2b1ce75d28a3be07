"""
Exception types for Rune.

Store failures, unparseable model output and LLM transport failures each get
their own type so callers can decide what to retry.
"""


class RuneError(Exception):
    """Base class for all Rune errors."""


class PersistenceError(RuneError):
    """A read or write against the database failed."""


class RecordNotFoundError(PersistenceError):
    """A row addressed by id does not exist."""


class ExtractionParseError(RuneError):
    """
    The extraction or synthesis agent returned text that could not be turned
    into the expected structure, even after salvaging an embedded JSON object.
    """

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class AgentCallError(RuneError):
    """The LLM backend could not be reached or returned an error status."""
