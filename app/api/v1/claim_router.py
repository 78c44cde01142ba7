# app/api/v1/claim_router.py
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.api.deps import Pagination, service_provider
from app.api.responses import ok, paged
from app.db.models import ClaimStatus, ClaimType
from app.db.schemas import (
    ApiResponse,
    ClaimAdjudicateRequest,
    ClaimAppealRequest,
    ClaimCreate,
    ClaimResponse,
    ClaimResubmitRequest,
    ClaimResubmitResult,
    ClaimSubmitRequest,
    ClaimSummaryResponse,
    ClaimUpdate,
    ClaimVoidRequest,
    ERROR_RESPONSES,
    PageResponse,
)
from app.services.v1 import ClaimService

claim_router = APIRouter(
    prefix="/insurance/claims",
    tags=["Insurance claims"],
    responses=ERROR_RESPONSES,
)

claim_reader = service_provider(ClaimService, "insurance:read")
claim_creator = service_provider(ClaimService, "insurance:create")
claim_editor = service_provider(ClaimService, "insurance:update")
claim_submitter = service_provider(ClaimService, "insurance:submit_claim")
claim_voider = service_provider(ClaimService, "insurance:void")


@claim_router.post(
    "",
    response_model=ApiResponse[ClaimResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a claim or preauthorization",
)
async def create_claim(
    payload: ClaimCreate,
    service: ClaimService = Depends(claim_creator),
):
    claim = await service.create(payload)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.get(
    "",
    response_model=ApiResponse[PageResponse[ClaimSummaryResponse]],
    summary="List claims",
)
async def list_claims(
    claim_status: Optional[ClaimStatus] = Query(None, alias="status"),
    claim_type: Optional[ClaimType] = None,
    patient_id: Optional[str] = None,
    pagination: Pagination = Depends(),
    service: ClaimService = Depends(claim_reader),
):
    page = await service.list_claims(
        page=pagination.page,
        page_size=pagination.page_size,
        status=claim_status,
        claim_type=claim_type,
        patient_id=patient_id,
    )
    return paged(ClaimSummaryResponse, page)


@claim_router.get(
    "/{claim_id}",
    response_model=ApiResponse[ClaimResponse],
    summary="Get a claim with its lines and status history",
    description="""
    **Database Impact:** one query for the claim plus one selectin query
    each for items and status history.
    """,
)
async def get_claim(
    claim_id: str,
    service: ClaimService = Depends(claim_reader),
):
    claim = await service.get_claim(claim_id)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.patch(
    "/{claim_id}",
    response_model=ApiResponse[ClaimResponse],
    summary="Edit a claim",
    description="""
    DRAFT and READY claims accept every field. Submitted, denied and
    appealed claims only accept `payer_claim_id` and `allowed_amount`.
    PAID, VOID and CLOSED claims are locked.
    """,
)
async def update_claim(
    claim_id: str,
    payload: ClaimUpdate,
    service: ClaimService = Depends(claim_editor),
):
    claim = await service.update(claim_id, payload)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.post(
    "/{claim_id}/submit",
    response_model=ApiResponse[ClaimResponse],
    summary="Submit a claim to the payer",
)
async def submit_claim(
    claim_id: str,
    payload: ClaimSubmitRequest,
    service: ClaimService = Depends(claim_submitter),
):
    claim = await service.submit(claim_id, payload)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.post(
    "/{claim_id}/adjudicate",
    response_model=ApiResponse[ClaimResponse],
    summary="Record the payer decision",
)
async def adjudicate_claim(
    claim_id: str,
    payload: ClaimAdjudicateRequest,
    service: ClaimService = Depends(claim_submitter),
):
    claim = await service.adjudicate(claim_id, payload)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.post(
    "/{claim_id}/appeal",
    response_model=ApiResponse[ClaimResponse],
    summary="Appeal a denied claim",
)
async def appeal_claim(
    claim_id: str,
    payload: ClaimAppealRequest,
    service: ClaimService = Depends(claim_submitter),
):
    claim = await service.appeal(claim_id, payload)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.post(
    "/{claim_id}/resubmit",
    response_model=ApiResponse[ClaimResubmitResult],
    status_code=status.HTTP_201_CREATED,
    summary="Replace a denied claim with a corrected one",
)
async def resubmit_claim(
    claim_id: str,
    payload: ClaimResubmitRequest,
    service: ClaimService = Depends(claim_submitter),
):
    original, corrected = await service.resubmit(claim_id, payload)
    return ok(
        ClaimResubmitResult(
            original=ClaimResponse.model_validate(original),
            corrected=ClaimResponse.model_validate(corrected),
        )
    )


@claim_router.post(
    "/{claim_id}/void",
    response_model=ApiResponse[ClaimResponse],
    summary="Void a claim",
)
async def void_claim(
    claim_id: str,
    payload: ClaimVoidRequest,
    service: ClaimService = Depends(claim_voider),
):
    claim = await service.void(claim_id, payload)
    return ok(ClaimResponse.model_validate(claim))


@claim_router.delete(
    "/{claim_id}",
    response_model=ApiResponse[dict[str, str]],
    summary="Delete a draft claim",
)
async def delete_claim(
    claim_id: str,
    service: ClaimService = Depends(claim_voider),
):
    await service.delete(claim_id)
    return ok({"claim_id": claim_id})


__all__ = ["claim_router"]
