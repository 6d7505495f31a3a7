from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Optional

from sqlalchemy import select, update

from ..errors import NotFoundError
from ..extensions import db
from ..models import AssignmentEdge, Exchange, ExchangeStatus, Participant, Questionnaire
from ..security import decrypt_recipient, encrypt_recipient


class ExchangeStore:
    """
    Narrow persistence contract the lifecycle and notifier work against.

    Writes are staged on the session; callers decide when to commit so that
    a status change and its side data land in the same transaction.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    # --- reads ---

    def get_exchange(self, exchange_id: int) -> Exchange:
        exchange = self.session.get(Exchange, exchange_id)
        if exchange is None:
            raise NotFoundError(f"Exchange {exchange_id} not found.")
        return exchange

    def get_participant(self, participant_id: int) -> Participant:
        participant = self.session.get(Participant, participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found.")
        return participant

    def get_participant_by_token(self, token: str) -> Participant:
        participant = self.session.execute(
            select(Participant).where(Participant.token == token)
        ).scalar_one_or_none()
        if participant is None:
            raise NotFoundError("Questionnaire link is not valid.")
        return participant

    def list_participants(self, exchange_id: int) -> list[Participant]:
        return list(
            self.session.execute(
                select(Participant).where(Participant.exchange_id == exchange_id).order_by(Participant.id)
            ).scalars()
        )

    def find_participant_by_email(self, exchange_id: int, email: str) -> Optional[Participant]:
        return self.session.execute(
            select(Participant).where(Participant.exchange_id == exchange_id, Participant.email == email)
        ).scalar_one_or_none()

    def get_questionnaire(self, participant_id: int) -> Optional[Questionnaire]:
        return self.session.execute(
            select(Questionnaire).where(Questionnaire.participant_id == participant_id)
        ).scalar_one_or_none()

    def edge_map(self, exchange_id: int) -> dict[int, int]:
        edges = self.session.execute(
            select(AssignmentEdge).where(AssignmentEdge.exchange_id == exchange_id)
        ).scalars()
        return {e.giver_id: decrypt_recipient(e.recipient_ciphertext) for e in edges}

    def recipient_of(self, participant_id: int) -> Optional[int]:
        edge = self.session.execute(
            select(AssignmentEdge).where(AssignmentEdge.giver_id == participant_id)
        ).scalar_one_or_none()
        if edge is None:
            return None
        return decrypt_recipient(edge.recipient_ciphertext)

    # --- writes (staged, not committed) ---

    def add(self, obj) -> None:
        self.session.add(obj)

    def delete(self, obj) -> None:
        self.session.delete(obj)

    def write_edges(self, exchange_id: int, mapping: Mapping[int, int]) -> None:
        for giver_id, recipient_id in mapping.items():
            self.session.add(
                AssignmentEdge(
                    exchange_id=exchange_id,
                    giver_id=giver_id,
                    recipient_ciphertext=encrypt_recipient(recipient_id),
                )
            )

    def transition_status(
        self,
        exchange_id: int,
        expected: Iterable[ExchangeStatus],
        new_status: ExchangeStatus,
        *conditions,
        **values,
    ) -> bool:
        """
        Compare-and-set on Exchange.status. Returns False when the row's status
        was no longer one of `expected` (or an extra condition failed) at write time.
        """
        return self.update_exchange(exchange_id, expected, *conditions, status=new_status, **values)

    def update_exchange(self, exchange_id: int, expected: Iterable[ExchangeStatus], *conditions, **values) -> bool:
        result = self.session.execute(
            update(Exchange)
            .where(Exchange.id == exchange_id, Exchange.status.in_(list(expected)), *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self._expire(Exchange, exchange_id)
        return True

    def claim_secret(self, participant_id: int, sent_at: datetime) -> bool:
        """
        Set Participant.secret_sent_at only if it is still unset. Returns False
        when another run (or an earlier, interrupted one) already holds it.
        """
        result = self.session.execute(
            update(Participant)
            .where(Participant.id == participant_id, Participant.secret_sent_at.is_(None))
            .values(secret_sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        self._expire(Participant, participant_id)
        return result.rowcount == 1

    def release_secret(self, participant_id: int) -> None:
        self.session.execute(
            update(Participant)
            .where(Participant.id == participant_id)
            .values(secret_sent_at=None)
            .execution_options(synchronize_session=False)
        )
        self._expire(Participant, participant_id)

    def _expire(self, model, pk: int) -> None:
        # reload the in-session copy on next access
        obj = self.session.get(model, pk)
        if obj is not None:
            self.session.expire(obj)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
