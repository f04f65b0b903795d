"""Error types raised across icracy."""


class IcracyError(Exception):
    """Base class for all icracy errors."""


class InvalidInput(IcracyError):
    """Raised when a request is missing required fields."""


class NotFound(IcracyError):
    """Raised when a referenced record does not exist."""


class Forbidden(IcracyError):
    """Raised when a user acts on a record they do not own."""


class DelegateCallFailed(IcracyError):
    """Raised when a single delegate call fails.

    Isolated to one delegate: the orchestrator records it as that
    delegate's outcome and the debate still completes.
    """

    def __init__(self, model_id: str, reason: str) -> None:
        self.model_id = model_id
        self.reason = reason
        super().__init__(f"[{model_id}] {reason}")


class PersistenceFailure(IcracyError):
    """Raised when a store transaction fails and was rolled back."""


class CatalogLookupFailure(IcracyError):
    """Raised when the delegate catalog or rankings page cannot be loaded."""
