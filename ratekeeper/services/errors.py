from ratekeeper.domain.window import QuotaKey


class QuotaValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class StoreError(RuntimeError):
    """Base class for durable store failures; no decision is derived from them."""


class StoreTransientError(StoreError):
    def __init__(self, key: QuotaKey) -> None:
        super().__init__(
            f"Counter transaction for '{key.identity}' on '{key.resource}' failed and was rolled back"
        )
        self.key = key


class StoreUnavailableError(StoreError):
    pass
