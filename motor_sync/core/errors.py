"""Error taxonomy for sync runs."""


class MotorSyncError(Exception):
    """Base class for engine errors."""


class SourceFetchError(MotorSyncError):
    """One adapter failed to fetch or parse its feed."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class ParseAmbiguityError(MotorSyncError):
    """A listing has no extractable horsepower and cannot be scored."""

    def __init__(self, title: str) -> None:
        self.title = title
        super().__init__(f"No horsepower found in listing '{title}'")


class PersistenceError(MotorSyncError):
    """A database read or write failed."""

    def __init__(self, operation: str, table: str, message: str) -> None:
        self.operation = operation
        self.table = table
        self.message = message
        super().__init__(f"{operation} on {table} failed: {message}")


class RunFatalError(MotorSyncError):
    """The run scaffolding itself failed."""


class ReviewActionError(MotorSyncError):
    """A review action could not be carried out."""
