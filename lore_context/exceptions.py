"""Exceptions raised by lore-context."""


class LoreContextError(Exception):
    """Base class for all lore-context errors."""


class ConfigError(LoreContextError):
    """Invalid engine configuration."""


class StorageError(LoreContextError):
    """A knowledge or history store could not be read or written.

    Fatal to the current build; the caller decides whether to continue with an
    empty context or abort generation.
    """

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage operation '{operation}' failed: {cause}")


class BuildCancelled(LoreContextError):
    """The build was cancelled before activation records were committed."""
