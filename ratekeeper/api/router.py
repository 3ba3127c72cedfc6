from fastapi import APIRouter

from ratekeeper.api.v1.routes import check, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(check.router, tags=["admission"])
