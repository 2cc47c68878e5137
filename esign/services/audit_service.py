"""
Audit ledger for e-sign documents.

Entries are appended inside the caller's transaction, numbered per document
and chained by hash so that any rewrite of history is detectable.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from esign.db.models import ESignAuditLog, ESignAuditAction
from esign.utils.audit import ClientContext, SYSTEM_CONTEXT, compute_entry_hash
from esign.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


def _json_safe(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    return json.loads(json.dumps(details, default=str))


def entry_payload(entry: ESignAuditLog) -> Dict[str, Any]:
    """Canonical fields covered by an entry's hash."""
    return {
        "document_id": entry.document_id,
        "recipient_id": entry.recipient_id,
        "sequence": entry.sequence,
        "action": entry.action,
        "action_details": entry.action_details,
        "actor_email": entry.actor_email,
        "actor_name": entry.actor_name,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "geolocation": entry.geolocation,
        "occurred_at": entry.occurred_at.isoformat() if entry.occurred_at else None,
        "previous_hash": entry.previous_hash,
    }


class ESignAuditService:
    """Append-only, hash-chained audit ledger."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or utcnow

    def _last_entry(self, document_id: int) -> Optional[ESignAuditLog]:
        return (
            self.db.query(ESignAuditLog)
            .filter(ESignAuditLog.document_id == document_id)
            .order_by(ESignAuditLog.sequence.desc())
            .first()
        )

    def record(
        self,
        document_id: int,
        action: ESignAuditAction,
        context: Optional[ClientContext] = None,
        recipient_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ESignAuditLog:
        """
        Append an entry to a document's ledger.

        Does not commit: the entry belongs to the transaction that performs the
        transition it describes.

        Args:
            document_id: Document the action belongs to
            action: Audited action
            context: Actor and client metadata (system if None)
            recipient_id: Recipient involved, if any
            details: JSON-serializable action details

        Returns:
            The pending ESignAuditLog row
        """
        context = context or SYSTEM_CONTEXT
        last = self._last_entry(document_id)

        entry = ESignAuditLog(
            document_id=document_id,
            recipient_id=recipient_id,
            sequence=(last.sequence + 1) if last else 1,
            action=ESignAuditAction(action).value,
            action_details=_json_safe(details),
            actor_email=context.actor_email,
            actor_name=context.actor_name,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            geolocation=context.geolocation,
            occurred_at=self.clock(),
            previous_hash=last.entry_hash if last else None,
        )
        entry.entry_hash = compute_entry_hash(entry_payload(entry))

        self.db.add(entry)
        # Flush so the next entry in this transaction sees this one as its predecessor
        self.db.flush()

        logger.debug(f"Audit {entry.action} #{entry.sequence} recorded for document {document_id}")
        return entry

    def get_audit_trail(
        self,
        document_id: int,
        action: Optional[str] = None,
        recipient_id: Optional[int] = None,
    ) -> List[ESignAuditLog]:
        """Entries for a document in sequence order, optionally filtered."""
        query = self.db.query(ESignAuditLog).filter(ESignAuditLog.document_id == document_id)
        if action:
            query = query.filter(ESignAuditLog.action == action)
        if recipient_id is not None:
            query = query.filter(ESignAuditLog.recipient_id == recipient_id)
        return query.order_by(ESignAuditLog.sequence.asc()).all()

    def verify_audit_chain(self, document_id: int) -> Dict[str, Any]:
        """
        Recompute the hash chain of a document's ledger.

        Returns:
            Dictionary with 'valid', 'entries' and, when broken, 'broken_at'
            (sequence number) and 'reason'
        """
        entries = self.get_audit_trail(document_id)
        previous_hash = None

        for expected_sequence, entry in enumerate(entries, start=1):
            if entry.sequence != expected_sequence:
                return self._broken(document_id, entries, entry, f"expected sequence {expected_sequence}")
            if entry.previous_hash != previous_hash:
                return self._broken(document_id, entries, entry, "previous_hash does not match prior entry")
            if compute_entry_hash(entry_payload(entry)) != entry.entry_hash:
                return self._broken(document_id, entries, entry, "entry_hash does not match contents")
            previous_hash = entry.entry_hash

        return {"document_id": document_id, "valid": True, "entries": len(entries)}

    @staticmethod
    def _broken(document_id: int, entries: List[ESignAuditLog], entry: ESignAuditLog, reason: str) -> Dict[str, Any]:
        logger.warning(f"Audit chain for document {document_id} broken at #{entry.sequence}: {reason}")
        return {
            "document_id": document_id,
            "valid": False,
            "entries": len(entries),
            "broken_at": entry.sequence,
            "reason": reason,
        }
