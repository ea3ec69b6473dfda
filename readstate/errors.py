class ReadStateError(Exception):
    """Base exception for readstate domain errors."""

    pass


class EntityNotFoundError(ReadStateError):
    """Raised when a conversation or room is not tracked by a store."""

    pass


class ConfigError(ReadStateError):
    """Raised when config.yaml has an invalid structure."""

    pass


class CacheError(ReadStateError):
    """Raised when the message cache cannot be read or written."""

    pass


class ScriptError(ReadStateError):
    """Raised when a replay script is malformed."""

    pass
