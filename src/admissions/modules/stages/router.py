"""
Stages Router

Endpoints:
- POST /stages/decisions - Record one decision (staff)
- POST /stages/decisions/bulk - Apply a spreadsheet of decisions (admin)
- GET /stages/decisions/bulk/template - Bulk import column layout (staff)
- GET /stages/stats - Applicant counts per stage and status (staff)
- GET /stages/applicants - List applicants by stage and status (staff)
- GET /stages/applicants/{applicant_id} - Current stage projection (staff)
- GET /stages/applicants/{applicant_id}/history - Selection records (staff)
- GET /stages/pipeline - The competition pipeline (public)
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.auth import StaffUser, get_current_admin_user, get_current_staff_user
from admissions.core.database import get_db
from admissions.core.errors import ServiceError, handle_service_error, internal_error
from admissions.modules.stages import pipeline, service
from admissions.modules.stages.schemas import (
    ApplicantListResponse,
    BulkDecisionRequest,
    BulkDecisionSummary,
    BulkTemplateResponse,
    DecisionRequest,
    DecisionResponse,
    EffectiveStatus,
    PipelineStageResponse,
    SelectionRecordResponse,
    StageCount,
    StageProjection,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/decisions",
    response_model=DecisionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a stage decision",
    responses={
        400: {"description": "Decision is malformed"},
        404: {"description": "Applicant not found"},
        409: {"description": "Stage mismatch, applicant terminal, or fee unpaid"},
    },
)
async def record_decision(
    data: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    staff: StaffUser = Depends(get_current_staff_user),
) -> DecisionResponse:
    """
    Select or reject one applicant at their current stage.

    `from_stage` must match the applicant's current stage; a stale decision
    is rejected with STAGE_MISMATCH rather than applied twice.
    """
    try:
        record, applicant = await service.record_single_decision(
            db,
            data.applicant_id,
            service.StageDecision(
                from_stage=data.from_stage,
                decision=data.decision,
                next_stage=data.next_stage,
            ),
            actor=staff,
        )
        return DecisionResponse(
            record=SelectionRecordResponse.model_validate(record),
            applicant=service.project(applicant),
        )
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "recording decision") from e


@router.post(
    "/decisions/bulk",
    response_model=BulkDecisionSummary,
    summary="Apply decisions in bulk",
)
async def apply_bulk_decisions(
    data: BulkDecisionRequest,
    db: AsyncSession = Depends(get_db),
    admin: StaffUser = Depends(get_current_admin_user),
) -> BulkDecisionSummary:
    """
    Apply rows exported from the selection spreadsheet.

    Rows are applied independently. Failed rows are listed with their row
    number and reason; the rest of the batch still applies.
    """
    try:
        return await service.apply_bulk_decisions(db, data.rows, actor=admin)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "applying bulk decisions") from e


@router.get(
    "/decisions/bulk/template",
    response_model=BulkTemplateResponse,
    summary="Bulk import template",
)
async def get_bulk_template(
    staff: StaffUser = Depends(get_current_staff_user),
) -> BulkTemplateResponse:
    return BulkTemplateResponse(**service.bulk_template())


@router.get(
    "/stats",
    response_model=list[StageCount],
    summary="Applicant counts per stage",
)
async def get_stage_counts(
    db: AsyncSession = Depends(get_db),
    staff: StaffUser = Depends(get_current_staff_user),
) -> list[StageCount]:
    """Applicants at each stage, broken down by effective status."""
    try:
        return await service.stage_counts(db)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "counting applicants per stage") from e


@router.get(
    "/applicants",
    response_model=ApplicantListResponse,
    summary="List applicants by stage and status",
    responses={400: {"description": "Stage is not in the pipeline"}},
)
async def list_applicants(
    stage: int | None = Query(
        None,
        ge=0,
        description="Filter by current stage index",
    ),
    status: EffectiveStatus | None = Query(
        None,
        description="Filter by effective status",
    ),
    skip: int = Query(
        0,
        ge=0,
        description="Records to skip",
    ),
    limit: int = Query(
        50,
        ge=1,
        le=200,
        description="Maximum records to return",
    ),
    db: AsyncSession = Depends(get_db),
    staff: StaffUser = Depends(get_current_staff_user),
) -> ApplicantListResponse:
    try:
        applicants, total = await service.list_applicants(
            db,
            stage=stage,
            effective_status=status,
            skip=skip,
            limit=limit,
        )
        return ApplicantListResponse(applicants=applicants, total=total, skip=skip, limit=limit)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "listing applicants") from e


@router.get(
    "/applicants/{applicant_id}",
    response_model=StageProjection,
    summary="Get an applicant's current stage",
)
async def get_current_stage(
    applicant_id: UUID,
    db: AsyncSession = Depends(get_db),
    staff: StaffUser = Depends(get_current_staff_user),
) -> StageProjection:
    try:
        return await service.current_stage(db, applicant_id)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "fetching current stage") from e


@router.get(
    "/applicants/{applicant_id}/history",
    response_model=list[SelectionRecordResponse],
    summary="Get an applicant's selection history",
)
async def get_history(
    applicant_id: UUID,
    db: AsyncSession = Depends(get_db),
    staff: StaffUser = Depends(get_current_staff_user),
) -> list[SelectionRecordResponse]:
    """Selection records, oldest first."""
    try:
        records = await service.get_history(db, applicant_id)
        return [SelectionRecordResponse.model_validate(r) for r in records]
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "fetching selection history") from e


@router.get(
    "/pipeline",
    response_model=list[PipelineStageResponse],
    summary="List competition stages",
)
async def get_pipeline() -> list[PipelineStageResponse]:
    return [
        PipelineStageResponse(
            index=stage.index,
            name=stage.name,
            payment_type=stage.payment_type,
            fee_amount=str(pipeline.default_fee(stage.payment_type)) if stage.payment_type else None,
        )
        for stage in pipeline.PIPELINE
    ]
