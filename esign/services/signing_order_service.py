"""
Signing order coordination.

Decides which signers may currently act on a document. Parallel documents
activate every signer at once; sequential documents activate one signer at a
time in (signing_order, id) order. cc and viewer recipients are never gated.
"""

import logging
from typing import List, Optional

from esign.db.models import DocumentStatus, ESignDocument, ESignRecipient, RecipientStatus, SigningMode
from esign.models.esign_state_machine import DocumentStateMachine, RecipientStateMachine

logger = logging.getLogger(__name__)


class SigningOrderCoordinator:
    """Computes signer eligibility for parallel and sequential documents."""

    @staticmethod
    def ordered_signers(document: ESignDocument) -> List[ESignRecipient]:
        """Signers sorted by signing_order, ties broken by id."""
        return sorted(document.signers, key=lambda r: (r.signing_order, r.id))

    @staticmethod
    def is_sequential(document: ESignDocument) -> bool:
        return SigningMode(document.signing_mode) == SigningMode.SEQUENTIAL

    def eligible_signers(self, document: ESignDocument) -> List[ESignRecipient]:
        """
        Signers allowed to act right now.

        In parallel mode every signer in sent/viewed; in sequential mode at
        most one, the lowest-ordered signer in sent/viewed.
        """
        if DocumentStatus(document.status) not in DocumentStateMachine.OPEN_FOR_SIGNING:
            return []
        active = [r for r in self.ordered_signers(document) if RecipientStateMachine.is_active(r.status)]
        if self.is_sequential(document):
            return active[:1]
        return active

    def initial_activation(self, document: ESignDocument) -> List[ESignRecipient]:
        """Signers to move to sent when the document is sent."""
        pending = [
            r for r in self.ordered_signers(document)
            if r.status == RecipientStatus.PENDING.value
        ]
        if self.is_sequential(document):
            return pending[:1]
        return pending

    def next_in_line(self, document: ESignDocument) -> Optional[ESignRecipient]:
        """
        The signer to activate after a signature in sequential mode.

        Returns None in parallel mode, while another signer is still active,
        or when every signer has signed. Consecutive recipients sharing an
        email address are activated one at a time like any other pair.
        """
        if not self.is_sequential(document):
            return None
        signers = self.ordered_signers(document)
        if any(RecipientStateMachine.is_active(r.status) for r in signers):
            return None
        for recipient in signers:
            if recipient.status == RecipientStatus.PENDING.value:
                return recipient
        return None

    def can_act(self, recipient: ESignRecipient) -> bool:
        """True if the recipient may fill fields, sign or decline now."""
        if not recipient.is_signer:
            return False
        return any(r.id == recipient.id for r in self.eligible_signers(recipient.document))
