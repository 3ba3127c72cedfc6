from datetime import datetime
from typing import Any

from ratekeeper.domain.window import Decision
from ratekeeper.services.decision_engine import DecisionEngine
from ratekeeper.services.errors import QuotaValidationError, StoreUnavailableError

MAX_IDENTITY_LENGTH = 45
MAX_RESOURCE_LENGTH = 255
MIN_WINDOW_MS = 1000


class AdmissionService:
    """Validates an admission request and hands it to the decision engine.

    Nothing touches storage until every field has been accepted. A service
    built before the engine exists rejects valid requests as unavailable.
    """

    def __init__(self, engine: DecisionEngine | None) -> None:
        self.engine = engine

    async def check(
        self,
        identity: Any,
        resource: Any,
        max_requests: Any,
        window_ms: Any,
        now: datetime | None = None,
    ) -> Decision:
        identity = self._require_text(
            "identity", identity, MAX_IDENTITY_LENGTH, "Invalid or missing identity"
        )
        resource = self._require_text(
            "resource", resource, MAX_RESOURCE_LENGTH, "Invalid or missing resource"
        )
        if not _is_int(max_requests) or max_requests < 1:
            raise QuotaValidationError(
                "max", "Invalid max value - must be a positive integer"
            )
        if not _is_int(window_ms) or window_ms < MIN_WINDOW_MS:
            raise QuotaValidationError(
                "windowMs", f"Invalid windowMs value - must be at least {MIN_WINDOW_MS}ms"
            )
        if self.engine is None:
            raise StoreUnavailableError("decision engine is not initialized")

        return await self.engine.decide(
            identity=identity,
            resource=resource,
            max_requests=max_requests,
            window_ms=window_ms,
            now=now,
        )

    @staticmethod
    def _require_text(field: str, value: Any, max_length: int, message: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise QuotaValidationError(field, message)
        normalized = value.strip()
        if len(normalized) > max_length:
            raise QuotaValidationError(
                field, f"Invalid {field} - must be at most {max_length} characters"
            )
        return normalized


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
