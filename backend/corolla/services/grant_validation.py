"""Grant invariant checks shared by bulk ingestion and single-grant creation."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence
from uuid import UUID

from email_validator import EmailNotValidError, validate_email

from ..repository import GrantKey, InstanceRef, SystemRef, TierRef
from .csv_rows import ACCESS_TIER_NAME, SYSTEM_NAME, USER_EMAIL, GrantRow
from .grant_resolution import Resolution

# purpose: decide grant validity and enumerate every violated rule per row
# status: active
# depends_on: corolla.services.grant_resolution.Resolution

MISSING_FIELD = "MISSING_FIELD"
INVALID_EMAIL = "INVALID_EMAIL"
NOT_FOUND = "NOT_FOUND"
TIER_SYSTEM_MISMATCH = "TIER_SYSTEM_MISMATCH"
INSTANCE_SYSTEM_MISMATCH = "INSTANCE_SYSTEM_MISMATCH"
DUPLICATE_ACTIVE_GRANT = "DUPLICATE_ACTIVE_GRANT"
DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"


@dataclass(frozen=True)
class Violation:
    code: str
    message: str


class RowErrors:
    """Ordered accumulator of violations for a single row."""

    def __init__(self) -> None:
        self._violations: list[Violation] = []

    def add(self, violation: Violation | None) -> None:
        if violation is not None:
            self._violations.append(violation)

    def extend(self, violations: Iterable[Violation]) -> None:
        for violation in violations:
            self.add(violation)

    @property
    def violations(self) -> tuple[Violation, ...]:
        return tuple(self._violations)

    @property
    def messages(self) -> tuple[str, ...]:
        return tuple(violation.message for violation in self._violations)

    def __bool__(self) -> bool:
        return bool(self._violations)

    def __len__(self) -> int:
        return len(self._violations)


@dataclass(frozen=True)
class ValidRow:
    row_number: int
    row_data: dict
    user_id: UUID
    system_id: UUID
    tier_id: UUID
    instance_id: UUID | None
    notes: str | None = None

    @property
    def key(self) -> GrantKey:
        return GrantKey(self.user_id, self.system_id, self.tier_id, self.instance_id)


@dataclass(frozen=True)
class ErrorRow:
    row_number: int
    row_data: dict
    errors: tuple[str, ...]


@dataclass
class BatchValidation:
    valid_rows: list[ValidRow] = field(default_factory=list)
    error_rows: list[ErrorRow] = field(default_factory=list)


def tier_scope_violation(system: SystemRef, tier: TierRef) -> Violation | None:
    if tier.system_id == system.id:
        return None
    return Violation(
        TIER_SYSTEM_MISMATCH,
        f'Access tier "{tier.name}" does not belong to system "{system.name}"',
    )


def instance_scope_violation(system: SystemRef, instance: InstanceRef | None) -> Violation | None:
    if instance is None or instance.system_id == system.id:
        return None
    return Violation(
        INSTANCE_SYSTEM_MISMATCH,
        f'Instance "{instance.name}" does not belong to system "{system.name}"',
    )


def duplicate_violation(key: GrantKey, active_keys: set[GrantKey]) -> Violation | None:
    if key not in active_keys:
        return None
    scope = "system/tier/instance" if key.instance_id is not None else "system/tier"
    return Violation(DUPLICATE_ACTIVE_GRANT, f"User already has an active grant for this {scope}")


def consistency_violations(resolution: Resolution) -> list[Violation]:
    """Return ownership violations for a resolution whose system is known."""

    system = resolution.system
    if system is None:
        return []
    violations: list[Violation] = []
    if resolution.tier is not None:
        mismatch = tier_scope_violation(system, resolution.tier)
        if mismatch:
            violations.append(mismatch)
    mismatch = instance_scope_violation(system, resolution.instance)
    if mismatch:
        violations.append(mismatch)
    return violations


class GrantValidator:
    """Side-effect free validation over already-resolved candidates."""

    required_fields = (USER_EMAIL, SYSTEM_NAME, ACCESS_TIER_NAME)

    def check_row(self, row: GrantRow, resolution: Resolution, active_keys: set[GrantKey]) -> RowErrors:
        errors = RowErrors()
        values = row.as_dict()
        for column in self.required_fields:
            if not values[column]:
                errors.add(Violation(MISSING_FIELD, f"Missing required field: {column}"))
        if row.user_email and not _looks_like_email(row.user_email):
            errors.add(Violation(INVALID_EMAIL, f"Invalid email format: {row.user_email}"))
        errors.extend(Violation(NOT_FOUND, label) for label in resolution.unresolved)
        errors.extend(consistency_violations(resolution))
        key = resolution.key
        if key is not None:
            errors.add(duplicate_violation(key, active_keys))
        return errors

    def validate_batch(
        self,
        candidates: Sequence[tuple[GrantRow, Resolution]],
        active_keys: set[GrantKey],
    ) -> BatchValidation:
        """Partition rows into valid and error rows, preserving input order.

        Rows whose grant tuple collides with another row of the same batch are
        all flagged, each naming the rows it collides with.
        """

        rows_by_key: dict[GrantKey, list[int]] = defaultdict(list)
        for row, resolution in candidates:
            key = resolution.key
            if key is not None:
                rows_by_key[key].append(row.row_number)

        result = BatchValidation()
        for row, resolution in candidates:
            errors = self.check_row(row, resolution, active_keys)
            key = resolution.key
            if key is not None and len(rows_by_key[key]) > 1:
                others = [str(number) for number in rows_by_key[key] if number != row.row_number]
                errors.add(
                    Violation(
                        DUPLICATE_IN_BATCH,
                        f"Duplicate row: same user/system/tier/instance as row(s) {', '.join(others)} in this upload",
                    )
                )
            if errors or key is None:
                result.error_rows.append(
                    ErrorRow(row_number=row.row_number, row_data=row.as_dict(), errors=errors.messages)
                )
                continue
            result.valid_rows.append(
                ValidRow(
                    row_number=row.row_number,
                    row_data=row.as_dict(),
                    user_id=key.user_id,
                    system_id=key.system_id,
                    tier_id=key.tier_id,
                    instance_id=key.instance_id,
                    notes=row.notes,
                )
            )
        return result


def _looks_like_email(value: str) -> bool:
    try:
        # internal directories use special-use domains such as .local
        validate_email(value, check_deliverability=False, globally_deliverable=False)
    except EmailNotValidError:
        return False
    return True
