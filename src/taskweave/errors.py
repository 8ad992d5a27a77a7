"""Common base for taskweave's domain errors."""


class TaskweaveError(Exception):
    """Base class for errors raised by taskweave itself."""

    pass
