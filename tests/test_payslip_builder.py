"""Tests for payslip lines and snapshot assembly."""

from decimal import Decimal
from uuid import UUID, uuid4

from compensation_engine.calculators.payslip_builder import (
    LineType,
    PayslipSnapshot,
    PayslipSnapshotBuilder,
)
from compensation_engine.calculators.tax_annualizer import TaxComputation
from compensation_engine.calculators.types import (
    AttendanceParams,
    CalculationMode,
    ComponentCategory,
    SalaryComponent,
)

RUN_ID = UUID("7b0f9c7e-64a4-4b8e-9d51-3f0b7d1f2a10")


def earning(amount, prorate=True) -> SalaryComponent:
    return SalaryComponent(
        id="basic",
        name="Basic Salary",
        category=ComponentCategory.EARNING,
        calculation_mode=CalculationMode.FIXED.value,
        monthly_amount=Decimal(amount),
        prorate=prorate,
    )


def no_tax(monthly_taxable) -> TaxComputation:
    return TaxComputation(
        monthly_taxable=monthly_taxable,
        remaining_months=12,
        annual_taxable=monthly_taxable * 12,
        annual_tax=Decimal("0"),
        monthly_withholding=Decimal("0"),
    )


def build(earnings, post_tax=(), previous=None, fingerprint="abc") -> PayslipSnapshot:
    gross = PayslipSnapshotBuilder.sum_lines(earnings)
    return PayslipSnapshotBuilder.build(
        employee_id="EMP001",
        run_id=RUN_ID,
        earnings=earnings,
        pre_tax_deductions=[],
        post_tax_deductions=post_tax,
        employer_contributions=[],
        tax=no_tax(gross),
        attendance=AttendanceParams.full_month(),
        inputs_fingerprint=fingerprint,
        engine_version="test",
        previous=previous,
    )


class TestProration:
    """present_days / total_days applied to attendance-linked earnings."""

    def test_prorated_earning(self):
        attendance = AttendanceParams(Decimal("20"), Decimal("22"))
        line = PayslipSnapshotBuilder.create_earning_line(earning("44000"), attendance)

        assert line.amount == Decimal("40000.00")
        assert line.original_amount == Decimal("44000")
        assert line.explanation == "20/22 days"
        assert line.line_type == LineType.EARNING

    def test_rounds_to_paise(self):
        attendance = AttendanceParams(Decimal("1"), Decimal("3"))
        line = PayslipSnapshotBuilder.create_earning_line(earning("1000"), attendance)

        assert line.amount == Decimal("333.33")

    def test_non_prorated_earning_keeps_full_amount(self):
        attendance = AttendanceParams(Decimal("10"), Decimal("30"))
        line = PayslipSnapshotBuilder.create_earning_line(earning("5000", prorate=False), attendance)

        assert line.amount == Decimal("5000.00")
        assert line.explanation is None

    def test_deduction_amounts_are_positive(self):
        line = PayslipSnapshotBuilder.create_line(
            LineType.POST_TAX_DEDUCTION, "Loan", Decimal("-1500.005")
        )
        assert line.amount == Decimal("1500.01")


class TestSnapshot:
    """Totals, identity and versioning."""

    def test_net_pay(self):
        earnings = [PayslipSnapshotBuilder.create_line(LineType.EARNING, "Basic", Decimal("30000"))]
        post_tax = [
            PayslipSnapshotBuilder.create_line(LineType.POST_TAX_DEDUCTION, "Loan", Decimal("5000"))
        ]
        snapshot = build(earnings, post_tax)

        assert snapshot.gross_earnings == Decimal("30000.00")
        assert snapshot.net_pay == Decimal("25000.00")
        assert snapshot.total_deductions == Decimal("5000.00")
        assert not snapshot.requires_review

    def test_negative_net_requires_review(self):
        earnings = [PayslipSnapshotBuilder.create_line(LineType.EARNING, "Basic", Decimal("3000"))]
        post_tax = [
            PayslipSnapshotBuilder.create_line(LineType.POST_TAX_DEDUCTION, "Loan", Decimal("5000"))
        ]
        snapshot = build(earnings, post_tax)

        assert snapshot.net_pay == Decimal("-2000.00")
        assert snapshot.requires_review

    def test_snapshot_id_is_deterministic(self):
        earnings = [PayslipSnapshotBuilder.create_line(LineType.EARNING, "Basic", Decimal("30000"))]

        assert build(earnings).snapshot_id == build(earnings).snapshot_id
        assert build(earnings).snapshot_id != build(earnings, fingerprint="xyz").snapshot_id

    def test_fingerprint_ignores_key_order(self):
        first = PayslipSnapshotBuilder.compute_fingerprint({"a": 1, "b": Decimal("2")})
        second = PayslipSnapshotBuilder.compute_fingerprint({"b": Decimal("2"), "a": 1})

        assert first == second
        assert len(first) == 32

    def test_previous_makes_next_version(self):
        earnings = [PayslipSnapshotBuilder.create_line(LineType.EARNING, "Basic", Decimal("30000"))]
        first = build(earnings)
        second = build(earnings, previous=first)

        assert first.version == 1
        assert second.version == 2
        assert second.supersedes_id == first.snapshot_id
        assert second.snapshot_id != first.snapshot_id

    def test_dict_round_trip(self):
        earnings = [PayslipSnapshotBuilder.create_earning_line(
            earning("44000"), AttendanceParams(Decimal("20"), Decimal("22"))
        )]
        snapshot = PayslipSnapshotBuilder.build(
            employee_id="EMP001",
            run_id=None,
            earnings=earnings,
            pre_tax_deductions=[],
            post_tax_deductions=[],
            employer_contributions=[],
            tax=no_tax(Decimal("40000")),
            attendance=AttendanceParams(Decimal("20"), Decimal("22")),
            inputs_fingerprint="abc",
            engine_version="test",
            structure_id=uuid4(),
            structure_revision=3,
            annual_ctc=Decimal("528000"),
        )

        assert PayslipSnapshot.from_dict(snapshot.to_dict()) == snapshot
