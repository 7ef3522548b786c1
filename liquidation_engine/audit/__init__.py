"""
Append-only audit trail.
"""

from liquidation_engine.audit.ledger import AuditEntry, AuditLedger

__all__ = ["AuditEntry", "AuditLedger"]
