"""Exceptions raised by the indexing services."""


class IndexingError(Exception):
    """Base class for indexing pipeline failures."""


class AgentDirectoryNotFoundError(IndexingError):
    """The agent's recordings directory is missing or unreadable.

    Treated as a job failure rather than an empty listing, so an unmounted
    share can never soft-delete an agent's whole history.
    """


class LeaseLostError(IndexingError):
    """The claim token no longer owns the agent's job."""


class InvalidCursorError(ValueError):
    """A pagination cursor could not be decoded."""


class InvalidAgentIdError(IndexingError, ValueError):
    """The agent id is not a single directory name under the recordings root."""
