"""
Exception types for the explorer sync core
"""


class ExplorerError(Exception):
    """Base class for explorer errors"""


class FetchError(ExplorerError):
    """A ledger query failed"""


class NotFoundError(FetchError):
    """The requested resource does not exist on chain"""


class InvalidAddressError(ExplorerError):
    """An address or hash failed format validation"""

    def __init__(self, value: str, kind: str = "address"):
        self.value = value
        self.kind = kind
        super().__init__(f"Invalid {kind} format: {value}")


class ConnectivityError(ExplorerError):
    """The SDK session could not be initialized after all retries"""

    def __init__(self, attempts: int, cause: Exception = None):
        self.attempts = attempts
        self.cause = cause
        message = f"Unable to connect to ledger after {attempts} attempts"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
