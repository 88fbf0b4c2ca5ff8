"""Payroll run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from compensation_engine.api.dependencies import DbSession, RunService, TenantId
from compensation_engine.api.schemas import (
    CalculateRequest,
    EmployeeInputSchema,
    ErrorResponse,
    PayrollRunCreate,
    PayrollRunResponse,
    PayslipResponse,
    PreflightRequest,
    PreflightResponse,
)
from compensation_engine.calculators.errors import EmployeeCalculationError

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

RunId = Annotated[UUID, Path()]


# ============================================================================
# Payroll Run CRUD
# ============================================================================


@router.post("/preflight", response_model=PreflightResponse)
async def preflight(
    tenant_id: TenantId,
    service: RunService,
    payload: PreflightRequest,
) -> PreflightResponse:
    """Report duplicate runs and employees without a structure."""
    report = await service.preflight(
        tenant_id, payload.month, payload.year, payload.employee_ids
    )
    return PreflightResponse.model_validate(report)


@router.post(
    "",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    service: RunService,
    payload: PayrollRunCreate,
) -> PayrollRunResponse:
    """Create a payroll run in INITIATED status."""
    record = await service.create_run(tenant_id, payload.month, payload.year)
    await db.commit()
    return PayrollRunResponse.model_validate(record)


@router.get("", response_model=list[PayrollRunResponse])
async def list_payroll_runs(
    tenant_id: TenantId,
    service: RunService,
) -> list[PayrollRunResponse]:
    records = await service.list_runs(tenant_id)
    return [PayrollRunResponse.model_validate(r) for r in records]


@router.get(
    "/{run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
) -> PayrollRunResponse:
    record = await service.get_run(run_id, tenant_id)
    return PayrollRunResponse.model_validate(record)


# ============================================================================
# Calculation
# ============================================================================


@router.post(
    "/{run_id}/calculate",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def calculate_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
    payload: CalculateRequest,
) -> PayrollRunResponse:
    """Calculate every employee; failures are recorded on the run."""
    record = await service.calculate_run(
        run_id,
        [e.to_domain() for e in payload.employees],
        tenant_id=tenant_id,
        deadline_seconds=payload.deadline_seconds,
    )
    await db.commit()
    return PayrollRunResponse.model_validate(record)


@router.post(
    "/{run_id}/recalculate",
    response_model=PayslipResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def recalculate_employee(
    db: DbSession,
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
    payload: EmployeeInputSchema,
) -> PayslipResponse:
    """Recalculate one employee as a new snapshot version."""
    try:
        snapshot = await service.recalculate_employee(run_id, payload.to_domain(), tenant_id)
    except EmployeeCalculationError:
        # the failure is stored on the run
        await db.commit()
        raise
    await db.commit()
    return PayslipResponse.model_validate(snapshot)


@router.get(
    "/{run_id}/payslips",
    response_model=list[PayslipResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_payslips(
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
    include_history: Annotated[bool, Query()] = False,
) -> list[PayslipResponse]:
    snapshots = await service.get_snapshots(run_id, tenant_id, include_history)
    return [PayslipResponse.model_validate(s) for s in snapshots]


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/{run_id}/approve",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
) -> PayrollRunResponse:
    """Approve a calculated run and lock its structures."""
    record = await service.approve_run(run_id, tenant_id)
    await db.commit()
    return PayrollRunResponse.model_validate(record)


@router.post(
    "/{run_id}/mark-paid",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def mark_payroll_paid(
    db: DbSession,
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
) -> PayrollRunResponse:
    record = await service.mark_paid(run_id, tenant_id)
    await db.commit()
    return PayrollRunResponse.model_validate(record)


@router.post(
    "/{run_id}/cancel",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    service: RunService,
    run_id: RunId,
) -> PayrollRunResponse:
    """Cancel a run; stored snapshots remain inspectable."""
    record = await service.cancel_run(run_id, tenant_id)
    await db.commit()
    return PayrollRunResponse.model_validate(record)
