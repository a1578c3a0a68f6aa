class PostgresContainerError(Exception):
    """Base class for errors raised by pgcontainer."""


class SnapshotError(PostgresContainerError):
    """A snapshot could not be taken or restored."""


class DriverNotFoundError(PostgresContainerError, LookupError):
    """No usable SQL driver is registered under the requested name."""
