from fastapi import APIRouter

from .booking_router import booking_router
from .recurring_router import recurring_router
from .case_acceptance_router import case_acceptance_router
from .claim_router import claim_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(booking_router)
api_router.include_router(recurring_router)
api_router.include_router(case_acceptance_router)
api_router.include_router(claim_router)

__all__ = [
    "api_router",
    "booking_router",
    "recurring_router",
    "case_acceptance_router",
    "claim_router",
]
