# app/api/v1/case_acceptance_router.py
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.api.deps import Pagination, service_provider
from app.api.responses import ok, paged
from app.db.models import AcceptanceStatus
from app.db.schemas import (
    ApiResponse,
    CaseAcceptanceCreate,
    CaseAcceptanceResponse,
    CaseAcceptanceSign,
    CaseAcceptanceUpdate,
    CaseAcceptanceWithdraw,
    ERROR_RESPONSES,
    PageResponse,
)
from app.services.v1 import CaseAcceptanceService

case_acceptance_router = APIRouter(
    prefix="/case-acceptances",
    tags=["Case acceptance"],
    responses=ERROR_RESPONSES,
)

acceptance_reader = service_provider(CaseAcceptanceService, "treatment:read")
acceptance_writer = service_provider(CaseAcceptanceService, "treatment:update")
acceptance_remover = service_provider(CaseAcceptanceService, "treatment:delete")


@case_acceptance_router.post(
    "",
    response_model=ApiResponse[CaseAcceptanceResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Start a case acceptance for a treatment plan",
    description="""
    Patients under the configured minor age need `guardian_name`. If every
    signature is already present the treatment plan is accepted in the same
    transaction.
    """,
)
async def create_case_acceptance(
    payload: CaseAcceptanceCreate,
    service: CaseAcceptanceService = Depends(acceptance_writer),
):
    acceptance = await service.create(payload)
    return ok(CaseAcceptanceResponse.model_validate(acceptance))


@case_acceptance_router.get(
    "",
    response_model=ApiResponse[PageResponse[CaseAcceptanceResponse]],
    summary="List case acceptances",
)
async def list_case_acceptances(
    acceptance_status: Optional[AcceptanceStatus] = Query(None, alias="status"),
    patient_id: Optional[str] = None,
    treatment_plan_id: Optional[str] = None,
    pagination: Pagination = Depends(),
    service: CaseAcceptanceService = Depends(acceptance_reader),
):
    page = await service.list_acceptances(
        page=pagination.page,
        page_size=pagination.page_size,
        status=acceptance_status,
        patient_id=patient_id,
        treatment_plan_id=treatment_plan_id,
    )
    return paged(CaseAcceptanceResponse, page)


@case_acceptance_router.get(
    "/{acceptance_id}",
    response_model=ApiResponse[CaseAcceptanceResponse],
    summary="Get a case acceptance",
)
async def get_case_acceptance(
    acceptance_id: str,
    service: CaseAcceptanceService = Depends(acceptance_reader),
):
    acceptance = await service.get_acceptance(acceptance_id)
    return ok(CaseAcceptanceResponse.model_validate(acceptance))


@case_acceptance_router.put(
    "/{acceptance_id}",
    response_model=ApiResponse[CaseAcceptanceResponse],
    summary="Update consents, financial terms or signatures",
)
async def update_case_acceptance(
    acceptance_id: str,
    payload: CaseAcceptanceUpdate,
    service: CaseAcceptanceService = Depends(acceptance_writer),
):
    acceptance = await service.update(acceptance_id, payload)
    return ok(CaseAcceptanceResponse.model_validate(acceptance))


@case_acceptance_router.patch(
    "/{acceptance_id}",
    response_model=ApiResponse[CaseAcceptanceResponse],
    summary="Sign a case acceptance",
)
async def sign_case_acceptance(
    acceptance_id: str,
    payload: CaseAcceptanceSign,
    service: CaseAcceptanceService = Depends(acceptance_writer),
):
    acceptance = await service.sign(acceptance_id, payload)
    return ok(CaseAcceptanceResponse.model_validate(acceptance))


@case_acceptance_router.post(
    "/{acceptance_id}/withdraw",
    response_model=ApiResponse[CaseAcceptanceResponse],
    summary="Withdraw a case acceptance",
)
async def withdraw_case_acceptance(
    acceptance_id: str,
    payload: CaseAcceptanceWithdraw,
    service: CaseAcceptanceService = Depends(acceptance_writer),
):
    acceptance = await service.withdraw(acceptance_id, payload.reason)
    return ok(CaseAcceptanceResponse.model_validate(acceptance))


@case_acceptance_router.delete(
    "/{acceptance_id}",
    response_model=ApiResponse[dict[str, str]],
    summary="Soft-delete a case acceptance",
)
async def delete_case_acceptance(
    acceptance_id: str,
    service: CaseAcceptanceService = Depends(acceptance_remover),
):
    await service.delete(acceptance_id)
    return ok({"acceptance_id": acceptance_id})


__all__ = ["case_acceptance_router"]
