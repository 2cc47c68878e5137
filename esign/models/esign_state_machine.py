"""
State-transition logic for e-sign documents and recipients.

All status derivation lives here; services ask these machines whether a
transition is legal instead of comparing raw status strings or timestamps.
"""

from typing import Dict, List

from esign.db.models import DocumentStatus, RecipientStatus
from esign.services.esign_exceptions import DocumentClosed, PreconditionFailed, AlreadySigned


class DocumentStateMachine:
    """
    Document lifecycle.

    draft -> pending -> in_progress -> completed, with side exits to voided
    (owner action) and declined (a signer declined).
    """

    TRANSITIONS: Dict[DocumentStatus, List[DocumentStatus]] = {
        DocumentStatus.DRAFT: [
            DocumentStatus.PENDING,
            DocumentStatus.VOIDED,
        ],
        DocumentStatus.PENDING: [
            DocumentStatus.IN_PROGRESS,
            DocumentStatus.VOIDED,
            DocumentStatus.DECLINED,
        ],
        DocumentStatus.IN_PROGRESS: [
            DocumentStatus.COMPLETED,
            DocumentStatus.VOIDED,
            DocumentStatus.DECLINED,
        ],
        DocumentStatus.COMPLETED: [],  # Terminal state
        DocumentStatus.VOIDED: [],  # Terminal state
        DocumentStatus.DECLINED: [],  # Terminal state
    }

    TERMINAL = frozenset({DocumentStatus.COMPLETED, DocumentStatus.VOIDED, DocumentStatus.DECLINED})

    # States in which signers and viewers may use their links
    OPEN_FOR_SIGNING = frozenset({DocumentStatus.PENDING, DocumentStatus.IN_PROGRESS})

    @classmethod
    def can_transition(cls, from_state: DocumentStatus, to_state: DocumentStatus) -> bool:
        """
        Check if state transition is valid.

        Args:
            from_state: Current state
            to_state: Target state

        Returns:
            True if transition is valid, False otherwise
        """
        return to_state in cls.TRANSITIONS.get(DocumentStatus(from_state), [])

    @classmethod
    def is_terminal(cls, state) -> bool:
        return DocumentStatus(state) in cls.TERMINAL

    @classmethod
    def ensure_open(cls, state) -> None:
        """Raise DocumentClosed when no further mutation is allowed."""
        if cls.is_terminal(state):
            raise DocumentClosed(f"Document is {DocumentStatus(state).value} and can no longer be changed")

    @classmethod
    def ensure_draft(cls, state) -> None:
        """Raise unless the document is still being prepared."""
        cls.ensure_open(state)
        if DocumentStatus(state) != DocumentStatus.DRAFT:
            raise PreconditionFailed(
                f"Document has already been sent (status: {DocumentStatus(state).value}); "
                "recipients and fields are locked"
            )

    @classmethod
    def ensure_signable(cls, state) -> None:
        """Raise unless recipients may currently act on the document."""
        cls.ensure_open(state)
        if DocumentStatus(state) not in cls.OPEN_FOR_SIGNING:
            raise PreconditionFailed(
                f"Document is not out for signature (status: {DocumentStatus(state).value})"
            )

    @classmethod
    def apply(cls, current_state, target_state) -> DocumentStatus:
        """
        Validate and return the target state.

        Raises:
            DocumentClosed: If the document is already terminal
            PreconditionFailed: If the transition is not allowed
        """
        current = DocumentStatus(current_state)
        target = DocumentStatus(target_state)
        cls.ensure_open(current)
        if not cls.can_transition(current, target):
            raise PreconditionFailed(
                f"Invalid document transition: {current.value} -> {target.value}. "
                f"Valid transitions from {current.value}: {[s.value for s in cls.get_valid_transitions(current)]}"
            )
        return target

    @classmethod
    def get_valid_transitions(cls, current_state) -> List[DocumentStatus]:
        return cls.TRANSITIONS.get(DocumentStatus(current_state), [])


class RecipientStateMachine:
    """
    Signer progress.

    pending -> sent -> viewed -> signed, with sent|viewed -> declined.
    cc and viewer recipients never move through this machine.
    """

    TRANSITIONS: Dict[RecipientStatus, List[RecipientStatus]] = {
        RecipientStatus.PENDING: [RecipientStatus.SENT],
        RecipientStatus.SENT: [RecipientStatus.VIEWED, RecipientStatus.DECLINED],
        RecipientStatus.VIEWED: [RecipientStatus.SIGNED, RecipientStatus.DECLINED],
        RecipientStatus.SIGNED: [],  # Terminal state
        RecipientStatus.DECLINED: [],  # Terminal state
    }

    ACTIVE = frozenset({RecipientStatus.SENT, RecipientStatus.VIEWED})

    @classmethod
    def can_transition(cls, from_state: RecipientStatus, to_state: RecipientStatus) -> bool:
        return to_state in cls.TRANSITIONS.get(RecipientStatus(from_state), [])

    @classmethod
    def is_active(cls, state) -> bool:
        """True while the recipient may fill fields, sign or decline."""
        return RecipientStatus(state) in cls.ACTIVE

    @classmethod
    def ensure_active(cls, state) -> None:
        """
        Raise unless the recipient is currently allowed to act.

        Raises:
            AlreadySigned: If the recipient has signed
            PreconditionFailed: If the recipient is not yet activated or has declined
        """
        current = RecipientStatus(state)
        if current == RecipientStatus.SIGNED:
            raise AlreadySigned("Recipient has already signed this document")
        if current == RecipientStatus.DECLINED:
            raise PreconditionFailed("Recipient has declined to sign this document")
        if current == RecipientStatus.PENDING:
            raise PreconditionFailed("It is not yet this recipient's turn to sign")

    @classmethod
    def apply(cls, current_state, target_state) -> RecipientStatus:
        """
        Validate and return the target state.

        Raises:
            AlreadySigned: If the recipient has already signed
            PreconditionFailed: If the transition is not allowed
        """
        current = RecipientStatus(current_state)
        target = RecipientStatus(target_state)
        if not cls.can_transition(current, target):
            if current == RecipientStatus.SIGNED:
                raise AlreadySigned("Recipient has already signed this document")
            raise PreconditionFailed(
                f"Invalid recipient transition: {current.value} -> {target.value}. "
                f"Valid transitions from {current.value}: {[s.value for s in cls.get_valid_transitions(current)]}"
            )
        return target

    @classmethod
    def get_valid_transitions(cls, current_state) -> List[RecipientStatus]:
        return cls.TRANSITIONS.get(RecipientStatus(current_state), [])
