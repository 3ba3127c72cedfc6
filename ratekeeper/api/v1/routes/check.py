from fastapi import APIRouter, Depends, Request

from ratekeeper.schemas.check import CheckRequest, CheckResponse
from ratekeeper.services.admission_service import AdmissionService

router = APIRouter()


async def get_admission_service(request: Request) -> AdmissionService:
    # The engine is absent until the lifespan has built it.
    return AdmissionService(getattr(request.app.state, "decision_engine", None))


@router.post(
    "/check",
    response_model=CheckResponse,
    response_model_exclude_none=True,
)
async def check(
    payload: CheckRequest,
    service: AdmissionService = Depends(get_admission_service),
) -> CheckResponse:
    # QuotaValidationError and StoreError are rendered by the app's handlers.
    decision = await service.check(
        identity=payload.identity,
        resource=payload.resource,
        max_requests=payload.max,
        window_ms=payload.window_ms,
    )
    return CheckResponse(allowed=decision.allowed, retry_after_ms=decision.retry_after_ms)
