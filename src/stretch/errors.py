class StretchError(Exception):
    """Base exception for stretch."""


class ConfigurationError(StretchError, RuntimeError):
    """Raised when a builder or manager is missing something it needs to run.

    Covers executing without a bound client, switching connections without a
    connection manager, and naming a connection or cache store that isn't configured.
    """


class MissingClientError(ConfigurationError):
    """Execution was attempted on a builder with no search client."""

    def __init__(self) -> None:
        """Build the error for a builder with no client."""
        super().__init__("Client not set. Cannot execute query.")


class MissingManagerError(ConfigurationError):
    """A connection switch was attempted on a builder with no connection manager."""

    def __init__(self) -> None:
        """Build the error for a builder with no manager."""
        super().__init__(
            "Elasticsearch manager not available. Cannot switch connections."
        )


class UnknownConnectionError(ConfigurationError):
    """A named connection was requested that is not in the settings."""

    def __init__(self, name: str) -> None:
        """Build the error for an unconfigured connection name."""
        super().__init__(f"Elasticsearch connection [{name}] not configured.")
        self.name: str = name


class UnknownCacheStoreError(ConfigurationError):
    """A cache store was requested by a name that is not registered."""

    def __init__(self, name: str, supported: str) -> None:
        """Build the error for an unregistered cache store name."""
        super().__init__(f"Cache store [{name}] not supported. Supported: {supported}.")
        self.name: str = name
