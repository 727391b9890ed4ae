"""
Custom Exception Classes for the Diamond client

Hierarchical exception structure shared by the store, the subscribers
and the manager facade.
"""


class DiamondError(Exception):
    """Base exception for all Diamond client errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class DiamondConfigError(DiamondError):
    """Invalid client settings"""

    def __init__(self, message: str):
        super().__init__(f"Config Error: {message}", recoverable=False)


class StorageUnavailableError(DiamondError):
    """Local directory or snapshot file I/O failed"""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"Storage Error: {message}", recoverable=True)


class ResolutionFailedError(DiamondError):
    """Bootstrap endpoint did not return a server address list"""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status: int | None = None,
    ):
        self.endpoint = endpoint
        self.status = status
        super().__init__(f"Resolution Error: {message}", recoverable=True)


class FetchFailedError(DiamondError):
    """A single server failed to return the configuration value"""

    def __init__(
        self,
        message: str,
        server: str | None = None,
        status: int | None = None,
    ):
        self.server = server
        self.status = status
        super().__init__(f"Fetch Error: {message}", recoverable=True)


class ConfigTimeoutError(DiamondError, TimeoutError):
    """No configuration value became available in time"""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"No configuration available after {timeout:.1f}s",
            recoverable=True,
        )


class WatcherError(DiamondError):
    """A registered watcher raised while being notified"""

    def __init__(self, watcher_name: str, cause: BaseException):
        self.watcher_name = watcher_name
        self.cause = cause
        super().__init__(
            f"Watcher [{watcher_name}] failed: {cause}",
            recoverable=True,
        )
