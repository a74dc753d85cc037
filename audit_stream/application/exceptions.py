"""Application-layer exceptions. Do not reuse domain exceptions."""


class ApplicationError(Exception):
    """Base for all application-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConnectFailure(ApplicationError):
    """Raised when the store cannot be reached or rejects the credentials. Surfaced to the operator."""


class SetupFailure(ApplicationError):
    """Raised when schema or capture-hook installation fails. Carries the step that failed."""

    def __init__(self, message: str, step: str) -> None:
        self.step = step
        super().__init__(f"{step}: {message}")


class NotConnected(ApplicationError):
    """Raised when an operation needs a store but none has been configured."""


class QueryFailure(ApplicationError):
    """Raised when a statement fails at runtime. transient=True means the handle was dropped and will be rebuilt."""

    def __init__(self, message: str, transient: bool = False) -> None:
        self.transient = transient
        super().__init__(message)


class NotificationDecodeFailure(ApplicationError):
    """Raised when a raw notification payload cannot be decoded into a change event."""
