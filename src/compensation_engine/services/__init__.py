"""Compensation engine services."""

from compensation_engine.services.locking_service import LockingService
from compensation_engine.services.payroll_run_service import PayrollRunService, PreflightReport
from compensation_engine.services.run_orchestrator import PayrollRun, PayrollRunOrchestrator, RunError
from compensation_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from compensation_engine.services.structure_service import StructureService

__all__ = [
    "LockingService",
    "PayrollRunService",
    "PreflightReport",
    "PayrollRun",
    "PayrollRunOrchestrator",
    "RunError",
    "InvalidTransitionError",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "StructureService",
]
