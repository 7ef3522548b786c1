"""
Audit ledger for the liquidation workflow.

Append-only log of every money- or decision-relevant event:
- Request status transitions (with reason and any override)
- Compliance check results and reviewer overrides
- Transaction attempts and their failures
- Liquidity reservations, commits and releases
- Reversals
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from liquidation_engine.domain import (
    ComplianceCheck,
    LiquidationTransaction,
    LiquidityReservation,
    StatusTransition,
    utc_now,
)
from liquidation_engine.logging import get_logger, redact_sensitive

logger = get_logger(__name__)


class AuditEntry(BaseModel):
    """Single entry in the audit ledger."""

    timestamp: datetime = Field(default_factory=utc_now)
    entry_type: str  # transition, check, transaction, reservation, reversal, error
    request_id: UUID | None = None
    entity_id: UUID | None = None
    status: str | None = None
    reason_code: str | None = None
    message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditLedger:
    """
    Append-only audit ledger.

    Entries are always kept in memory; when a base directory is given they
    are also written to {base_dir}/{run_id}/ledger.jsonl.
    """

    def __init__(self, base_dir: Path | None = None, run_id: str | None = None):
        if run_id is None:
            run_id = f"liq_{utc_now().strftime('%Y%m%d_%H%M%S')}"
        self._run_id = run_id
        self._entries: list[AuditEntry] = []

        self._ledger_path: Path | None = None
        if base_dir is not None:
            run_dir = base_dir / run_id
            run_dir.mkdir(parents=True, exist_ok=True)
            self._ledger_path = run_dir / "ledger.jsonl"
            self._write_manifest(run_dir)
            logger.info("Audit ledger initialized: %s", run_dir)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def ledger_path(self) -> Path | None:
        return self._ledger_path

    def _write_manifest(self, run_dir: Path) -> None:
        manifest = {"run_id": self._run_id, "started_at": utc_now().isoformat()}
        with open(run_dir / "manifest.json", "w") as f:
            json.dump(manifest, f, indent=2)

    def _append_entry(self, entry: AuditEntry) -> None:
        entry.metadata = redact_sensitive(entry.metadata)
        self._entries.append(entry)
        if self._ledger_path is not None:
            with open(self._ledger_path, "a") as f:
                f.write(entry.model_dump_json() + "\n")

    def record_transition(self, request_id: UUID, transition: StatusTransition) -> None:
        """Record a request status transition."""
        entry = AuditEntry(
            timestamp=transition.at,
            entry_type="transition",
            request_id=request_id,
            status=transition.to_status.value,
            reason_code=transition.reason_code.value if transition.reason_code else None,
            message=transition.reason,
            metadata={
                "from_status": transition.from_status.value,
                "override_by": transition.override_by,
            },
        )
        self._append_entry(entry)
        logger.debug(
            "Audit: %s %s -> %s",
            request_id,
            transition.from_status.value,
            transition.to_status.value,
        )

    def record_check(self, check: ComplianceCheck) -> None:
        """Record a compliance check result or override."""
        entry = AuditEntry(
            entry_type="check",
            request_id=check.request_id,
            entity_id=check.id,
            status=check.result.value,
            message=check.failure_reason or check.error_message,
            metadata={
                "check_type": check.check_type.value,
                "risk_score": check.risk_score,
                "retry_attempts": check.retry_attempts,
                "is_overridden": check.is_overridden,
                "original_result": check.original_result.value if check.original_result else None,
                "reviewed_by": check.reviewed_by,
                "override_reason": check.override_reason,
            },
        )
        self._append_entry(entry)

    def record_transaction(self, txn: LiquidationTransaction) -> None:
        """Record a transaction attempt outcome."""
        entry = AuditEntry(
            entry_type="transaction",
            request_id=txn.request_id,
            entity_id=txn.id,
            status=txn.status.value,
            message=txn.error_message,
            metadata={
                "attempt": txn.attempt_number,
                "provider_id": str(txn.provider_id),
                "snapshot_id": str(txn.snapshot_id),
                "gross_amount": str(txn.gross_amount),
                "total_fees": str(txn.total_fees),
                "net_amount": str(txn.net_amount),
                "settlement_reference": txn.settlement_reference,
            },
        )
        self._append_entry(entry)

    def record_reservation(self, reservation: LiquidityReservation) -> None:
        """Record a reservation state change."""
        entry = AuditEntry(
            entry_type="reservation",
            request_id=reservation.request_id,
            entity_id=reservation.id,
            status=reservation.state.value,
            metadata={
                "provider_id": str(reservation.provider_id),
                "amount": str(reservation.amount),
            },
        )
        self._append_entry(entry)

    def record_reversal(self, txn: LiquidationTransaction) -> None:
        """Record a transaction reversal."""
        entry = AuditEntry(
            entry_type="reversal",
            request_id=txn.request_id,
            entity_id=txn.id,
            status=txn.status.value,
            message=txn.reversal_reason,
            metadata={
                "reversed_by": txn.reversed_by,
                "reversal_reference": txn.reversal_reference,
            },
        )
        self._append_entry(entry)
        logger.warning("Audit: transaction %s reversed by %s", txn.id, txn.reversed_by)

    def record_error(self, message: str, request_id: UUID | None = None) -> None:
        """Record an unexpected error."""
        self._append_entry(AuditEntry(entry_type="error", request_id=request_id, message=message))
        logger.error("Audit: error %s", message)

    def get_entries(
        self,
        entry_type: str | None = None,
        request_id: UUID | None = None,
    ) -> list[AuditEntry]:
        """Ledger entries, optionally filtered."""
        return [
            e
            for e in self._entries
            if (entry_type is None or e.entry_type == entry_type)
            and (request_id is None or e.request_id == request_id)
        ]

    def read_file_entries(self) -> list[AuditEntry]:
        """Read entries back from the JSONL file."""
        if self._ledger_path is None or not self._ledger_path.exists():
            return []
        entries = []
        with open(self._ledger_path) as f:
            for line in f:
                if line.strip():
                    entries.append(AuditEntry.model_validate_json(line))
        return entries
