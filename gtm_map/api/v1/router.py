"""API v1 router aggregation."""
from fastapi import APIRouter

from gtm_map.api.v1.endpoints import admin, billing, generate, trial


api_router = APIRouter()

api_router.include_router(generate.router)
api_router.include_router(billing.router)
api_router.include_router(trial.router)
api_router.include_router(admin.router)
