"""Salary structure API endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from compensation_engine.api.dependencies import Config, DbSession, Structures, TenantId
from compensation_engine.api.schemas import (
    BreakupValidationResponse,
    ComponentSchema,
    ErrorResponse,
    IssueSchema,
    StructureEditRequest,
    StructureEvaluationResponse,
    StructureResponse,
    StructureRevisionResponse,
    StructureSchema,
    SuggestionRequest,
    SuggestionResponse,
)
from compensation_engine.calculators.balancing import (
    StructureEvaluation,
    apply_edit,
    evaluate_structure,
)
from compensation_engine.calculators.suggestion import suggest_structure, validate_breakup

router = APIRouter(prefix="/structures", tags=["structures"])


def _evaluation_response(evaluation: StructureEvaluation) -> StructureEvaluationResponse:
    return StructureEvaluationResponse(
        structure=StructureResponse.model_validate(evaluation.structure),
        mismatch=evaluation.mismatch,
        is_balanced=evaluation.is_balanced,
        is_valid=evaluation.is_valid,
        issues=[
            IssueSchema(code=issue.code, key=issue.key, message=str(issue))
            for issue in evaluation.issues
        ],
    )


# ============================================================================
# Stateless calculations
# ============================================================================


@router.post("/evaluate", response_model=StructureEvaluationResponse)
async def evaluate(payload: StructureSchema) -> StructureEvaluationResponse:
    """Decompose and balance a structure without saving it."""
    return _evaluation_response(evaluate_structure(payload.to_domain()))


@router.post(
    "/edit",
    response_model=StructureEvaluationResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def edit(payload: StructureEditRequest) -> StructureEvaluationResponse:
    """Apply one edit and return the re-balanced structure."""
    structure = payload.structure.to_domain()
    try:
        evaluation = apply_edit(structure, payload.edit.to_domain())
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Component {e.args[0]} is not in the structure",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _evaluation_response(evaluation)


@router.post("/suggest", response_model=SuggestionResponse)
async def suggest(payload: SuggestionRequest, config: Config) -> SuggestionResponse:
    """Propose a standard balanced breakup for a CTC."""
    suggestion = suggest_structure(payload.owner_id, payload.annual_ctc, config)
    return SuggestionResponse(
        structure=StructureResponse.model_validate(suggestion.structure),
        deductions=[ComponentSchema.model_validate(d) for d in suggestion.deductions],
        basic_share=suggestion.basic_share,
    )


@router.post("/validate-breakup", response_model=BreakupValidationResponse)
async def validate(payload: StructureSchema) -> BreakupValidationResponse:
    """Check the amounts on a proposed breakup against its CTC."""
    return BreakupValidationResponse.model_validate(validate_breakup(payload.to_domain()))


# ============================================================================
# Stored structures
# ============================================================================


@router.put(
    "",
    response_model=StructureRevisionResponse,
    responses={400: {"model": ErrorResponse}},
)
async def save_structure(
    db: DbSession,
    tenant_id: TenantId,
    structures: Structures,
    payload: StructureSchema,
) -> StructureRevisionResponse:
    """Validate and store a structure; locked revisions are revised."""
    record = await structures.save_structure(tenant_id, payload.to_domain())
    await db.commit()
    return StructureRevisionResponse.from_record(record)


@router.get(
    "/{owner_id}",
    response_model=StructureRevisionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_structure(
    tenant_id: TenantId,
    structures: Structures,
    owner_id: Annotated[str, Path()],
) -> StructureRevisionResponse:
    """Get the current structure for an owner."""
    record = await structures.get_current(tenant_id, owner_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No salary structure for {owner_id}",
        )
    return StructureRevisionResponse.from_record(record)


@router.get("/{owner_id}/revisions", response_model=list[StructureRevisionResponse])
async def list_revisions(
    tenant_id: TenantId,
    structures: Structures,
    owner_id: Annotated[str, Path()],
) -> list[StructureRevisionResponse]:
    records = await structures.list_revisions(tenant_id, owner_id)
    return [StructureRevisionResponse.from_record(r) for r in records]
