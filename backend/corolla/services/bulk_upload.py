"""Two-phase bulk ingestion of access grants."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping
from uuid import UUID

from ..repository import GrantConflict, GrantDraft, GrantRepository, RepositoryError
from .csv_rows import GrantRow, parse_csv
from .grant_resolution import ReferenceResolver
from .grant_validation import ErrorRow, GrantValidator, ValidRow

# purpose: orchestrate parse -> resolve -> validate over a batch and commit clean batches atomically
# status: active
# depends_on: corolla.services.csv_rows, corolla.services.grant_resolution, corolla.services.grant_validation

logger = logging.getLogger(__name__)

BULK_AUDIT_ACTION = "bulk_create_access_grant"


class BulkUploadError(RuntimeError):
    """Base error for batch-level bulk upload failures."""

    code = "BULK_UPLOAD_FAILED"


class BatchNotCommittable(BulkUploadError):
    """Raised when a commit is attempted on a batch that still has errors."""

    code = "BATCH_HAS_ERRORS"

    def __init__(self, evaluation: "BulkEvaluation"):
        self.evaluation = evaluation
        super().__init__(
            f"Validation failed: {len(evaluation.error_rows)} row(s) have errors. No records were inserted."
            if evaluation.error_rows
            else "Upload could not be parsed. No records were inserted."
        )


class BulkUploadInfrastructureError(BulkUploadError):
    """Raised when storage fails while evaluating or committing a batch."""

    code = "STORAGE_UNAVAILABLE"

    def __init__(self, message: str, evaluation: "BulkEvaluation | None" = None):
        self.evaluation = evaluation
        super().__init__(message)


@dataclass
class BulkEvaluation:
    valid_rows: list[ValidRow] = field(default_factory=list)
    error_rows: list[ErrorRow] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)
    parse_warnings: list[str] = field(default_factory=list)
    total_rows: int = 0

    @property
    def is_committable(self) -> bool:
        return not self.error_rows and not self.parse_errors


class BulkUploadCoordinator:
    """Evaluate uploads against one repository snapshot and commit clean batches."""

    def __init__(self, repo: GrantRepository, validator: GrantValidator | None = None):
        self.repo = repo
        self.validator = validator or GrantValidator()

    def evaluate_csv(self, text: str) -> BulkEvaluation:
        parsed = parse_csv(text)
        evaluation = self._evaluate(parsed.rows)
        evaluation.parse_errors = list(parsed.errors)
        evaluation.parse_warnings = list(parsed.warnings)
        return evaluation

    def evaluate_rows(self, rows: Iterable[Mapping]) -> BulkEvaluation:
        # structured rows are numbered as if a header line preceded them
        grant_rows = [GrantRow.from_mapping(index + 2, dict(row)) for index, row in enumerate(rows)]
        return self._evaluate(grant_rows)

    def _evaluate(self, rows: list[GrantRow]) -> BulkEvaluation:
        evaluation = BulkEvaluation(total_rows=len(rows))
        if not rows:
            return evaluation
        resolver = ReferenceResolver(self.repo)
        try:
            candidates = [(row, resolver.resolve(row)) for row in rows]
            keys = {resolution.key for _, resolution in candidates if resolution.key is not None}
            active_keys = self.repo.find_active_grant_keys(keys)
        except RepositoryError as exc:
            raise BulkUploadInfrastructureError("Bulk upload aborted: storage lookup failed", evaluation) from exc
        partition = self.validator.validate_batch(candidates, active_keys)
        evaluation.valid_rows = partition.valid_rows
        evaluation.error_rows = partition.error_rows
        logger.info(
            "Evaluated bulk upload: %d row(s), %d valid, %d with errors",
            evaluation.total_rows,
            len(evaluation.valid_rows),
            len(evaluation.error_rows),
        )
        return evaluation

    def commit(self, evaluation: BulkEvaluation, actor_id: UUID) -> int:
        """Insert every valid row in one transaction and return the inserted count."""

        if not evaluation.is_committable:
            raise BatchNotCommittable(evaluation)
        if not evaluation.valid_rows:
            return 0
        drafts = [
            GrantDraft(
                user_id=row.user_id,
                system_id=row.system_id,
                tier_id=row.tier_id,
                instance_id=row.instance_id,
                notes=row.notes,
            )
            for row in evaluation.valid_rows
        ]
        try:
            created = self.repo.insert_grants_atomically(
                drafts,
                granted_by=actor_id,
                granted_at=datetime.now(timezone.utc),
                audit_action=BULK_AUDIT_ACTION,
            )
        except GrantConflict:
            raise
        except RepositoryError as exc:
            raise BulkUploadInfrastructureError("Bulk upload aborted: grant insert was rolled back", evaluation) from exc
        logger.info("Committed %d access grant(s) from bulk upload by %s", len(created), actor_id)
        return len(created)
