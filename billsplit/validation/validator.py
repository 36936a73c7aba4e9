"""
Two-Stage Bill Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required text present
- Positive total
- Payer and every split user exist in the ledger
- Split amounts non-negative
- A draft failing here never reaches the mutation pipeline

STAGE 2 - SEMANTIC VALIDATION:
- Splits that don't add up to the total
- Zero-amount and duplicate splits
- Unknown payment mode or category
- Far-future dates and absurd amounts
- Likely duplicate bills
- These are WARNINGS: the ledger accepts them, a human should look

IMPORTANT: Validation NEVER silently fixes issues. In particular a
split sum that differs from the total is reported, not corrected; the
ledger stores exactly what it was given.
"""

from datetime import datetime, timedelta
from typing import Optional

from billsplit.config import get_settings
from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import BillDraft, ValidationIssue, ValidationResult


class BillValidator:
    """
    Validates bill drafts against the ledger they are headed for.

    Stage 1: Schema validation (structure and references)
    Stage 2: Semantic validation (sanity checks)
    """

    def __init__(self, store: LedgerStore):
        self._store = store
        self._settings = get_settings().app

    def _validate_schema(self, draft: BillDraft) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not draft.description.strip():
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="A bill needs a description",
                severity="error",
                suggested_fix="Describe what the bill was for",
            ))

        if draft.total_amount <= 0:
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="invalid_value",
                message="Total amount must be greater than zero",
                severity="error",
            ))

        if self._store.get_user(draft.payer_id) is None:
            issues.append(ValidationIssue(
                field="payer_id",
                issue_type="unknown_user",
                message=f"Payer {draft.payer_id} is not a member of this ledger",
                severity="error",
                suggested_fix="Pick the payer from the ledger's users",
            ))

        for index, split in enumerate(draft.splits):
            if self._store.get_user(split.user_id) is None:
                issues.append(ValidationIssue(
                    field=f"splits[{index}].user_id",
                    issue_type="unknown_user",
                    message=f"Split user {split.user_id} is not a member of this ledger",
                    severity="error",
                ))
            if split.amount < 0:
                issues.append(ValidationIssue(
                    field=f"splits[{index}].amount",
                    issue_type="invalid_value",
                    message="Split amounts cannot be negative",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: BillDraft,
        bill_id: Optional[int] = None,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Everything here is a warning, so this stage never blocks a bill.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not draft.splits:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="no_splits",
                message="Nobody owes anything for this bill; the payer is simply credited",
                severity="warning",
                suggested_fix="Add at least one split",
            ))
        elif draft.split_total != draft.total_amount:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="split_mismatch",
                message=(
                    f"Splits add up to {draft.split_total} "
                    f"but the bill total is {draft.total_amount}"
                ),
                severity="warning",
                suggested_fix="Adjust the splits so balances still sum to zero",
            ))

        seen = set()
        for index, split in enumerate(draft.splits):
            if split.amount == 0:
                issues.append(ValidationIssue(
                    field=f"splits[{index}].amount",
                    issue_type="zero_split",
                    message=f"User {split.user_id} has a zero split",
                    severity="warning",
                ))
            if split.user_id in seen:
                issues.append(ValidationIssue(
                    field=f"splits[{index}].user_id",
                    issue_type="duplicate_split",
                    message=f"User {split.user_id} appears in more than one split",
                    severity="warning",
                    suggested_fix="Merge the splits into one",
                ))
            seen.add(split.user_id)

        if (
            draft.payment_mode_id is not None
            and self._store.get_payment_mode(draft.payment_mode_id) is None
        ):
            issues.append(ValidationIssue(
                field="payment_mode_id",
                issue_type="unknown_reference",
                message=f"Payment mode {draft.payment_mode_id} does not exist",
                severity="warning",
            ))

        if (
            draft.category_id is not None
            and self._store.get_category(draft.category_id) is None
        ):
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="unknown_reference",
                message=f"Category {draft.category_id} does not exist",
                severity="warning",
            ))

        max_future = datetime.now() + timedelta(days=self._settings.future_date_tolerance_days)
        if draft.occurred_at.replace(tzinfo=None) > max_future:
            issues.append(ValidationIssue(
                field="occurred_at",
                issue_type="future_date",
                message=f"Bill date ({draft.occurred_at:%Y-%m-%d}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if draft.total_amount > self._settings.max_bill_amount:
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="suspicious_value",
                message=f"Amount ({draft.total_amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        issues.extend(self._check_duplicates(draft, bill_id))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_duplicates(
        self,
        draft: BillDraft,
        bill_id: Optional[int],
    ) -> list[ValidationIssue]:
        """Same description, amount, payer and day as an existing bill."""
        for bill in self._store.get_bills():
            if bill.id == bill_id:
                continue
            if (
                bill.description == draft.description
                and bill.total_amount == draft.total_amount
                and bill.payer_id == draft.payer_id
                and bill.occurred_at.date() == draft.occurred_at.date()
            ):
                return [ValidationIssue(
                    field="duplicate",
                    issue_type="potential_duplicate",
                    message=f"Bill {bill.id} looks like the same expense",
                    severity="warning",
                    suggested_fix="Please verify this isn't a duplicate entry",
                )]
        return []

    def validate(self, draft: BillDraft, bill_id: Optional[int] = None) -> ValidationResult:
        """
        Run the two-stage validation.

        Args:
            draft: The bill payload to check
            bill_id: The bill being edited, if this is an update

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        # Stage 2 assumes the references resolve
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft, bill_id)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if not result.schema_valid:
            lines.append("❌ This bill can't be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning.message}")

        lines.append("")
        if result.is_valid:
            lines.append("You can still save it, but please review carefully.")
        else:
            lines.append("Please fix the issues above before continuing.")

        return "\n".join(lines)
