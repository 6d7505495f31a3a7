from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..models import Exchange, Participant
from .delivery import DeliveryProvider, DeliveryResult, EmailMessage
from .messages import (
    all_complete_subject,
    all_complete_text,
    assignment_subject,
    assignment_text,
    invite_subject,
    invite_text,
)
from .store import ExchangeStore


logger = logging.getLogger(__name__)


@dataclass
class SendReport:
    total: int = 0
    sent_count: int = 0
    # delivered by an earlier or concurrent run; included in sent_count
    already_sent: list[int] = field(default_factory=list)
    failures: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def all_sent(self) -> bool:
        return self.total > 0 and self.sent_count == self.total

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "sent_count": self.sent_count,
            "already_sent": list(self.already_sent),
            "failures": list(self.failures),
            "errors": {str(k): v for k, v in self.errors.items()},
        }


@dataclass(frozen=True)
class ResendResult:
    participant_id: int
    status: str  # "sent" | "already_sent" | "failed"
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in ("sent", "already_sent")

    def to_dict(self) -> dict:
        return {"participant_id": self.participant_id, "status": self.status, "error": self.error}


class NotificationOrchestrator:
    """
    Sends each santa the name and questionnaire of their recipient.

    Recipients are handled one at a time and independently: a failure is
    recorded and the loop moves on. Each participant is claimed through a
    conditional write on Participant.secret_sent_at before the provider is
    called, so an interrupted or concurrent run, a retried send_all and
    resend_one never notify the same person twice.
    """

    def __init__(
        self,
        store: ExchangeStore,
        provider: DeliveryProvider,
        clock: Callable[[], datetime],
        sender: str = "",
        base_url: str = "",
    ):
        self.store = store
        self.provider = provider
        self.clock = clock
        self.sender = sender
        self.base_url = base_url

    def _organizer_name(self, exchange: Exchange) -> Optional[str]:
        return exchange.organizer.name if exchange.organizer else None

    def _deliver(self, exchange: Exchange, santa: Participant, recipient_id: Optional[int]) -> DeliveryResult:
        if recipient_id is None:
            return DeliveryResult(success=False, error="No assignment found")

        questionnaire = self.store.get_questionnaire(recipient_id)
        if questionnaire is None:
            return DeliveryResult(success=False, error="Recipient questionnaire not found")

        message = EmailMessage(
            to=santa.email,
            subject=assignment_subject(exchange),
            text=assignment_text(exchange, santa, questionnaire, self._organizer_name(exchange)),
            from_address=self.sender,
            tags={"type": "secret-santa-assignment", "exchange": str(exchange.id)},
        )
        try:
            return self.provider.send(message)
        except Exception as e:  # a broken provider must not abort the batch
            logger.exception("Provider %s raised while sending to participant %s", self.provider.name, santa.id)
            return DeliveryResult(success=False, error=f"Provider error: {e}")

    def _claimed_send(self, exchange: Exchange, santa: Participant, recipient_id: Optional[int]) -> Optional[DeliveryResult]:
        """
        Claim the participant, then deliver. Returns None when the participant
        was already claimed by an earlier or concurrent run.

        The claim is committed before the provider is called and released
        again unless delivery succeeded.
        """
        santa_id = santa.id
        if not self.store.claim_secret(santa_id, self.clock()):
            return None
        self.store.commit()

        delivered = False
        try:
            result = self._deliver(exchange, santa, recipient_id)
            delivered = result.success
        finally:
            if not delivered:
                self.store.release_secret(santa_id)
                self.store.commit()
        return result

    def send_all(self, exchange: Exchange) -> SendReport:
        participants = self.store.list_participants(exchange.id)
        edges = self.store.edge_map(exchange.id)
        report = SendReport(total=len(participants))

        for santa in participants:
            if santa.secret_sent_at is not None:
                report.already_sent.append(santa.id)
                report.sent_count += 1
                continue
            result = self._claimed_send(exchange, santa, edges.get(santa.id))
            if result is None:
                report.already_sent.append(santa.id)
                report.sent_count += 1
            elif result.success:
                report.sent_count += 1
            else:
                report.failures.append(santa.id)
                report.errors[santa.id] = result.error or "Send failed"
                logger.warning(
                    "Assignment email to participant %s (exchange %s) failed: %s",
                    santa.id, exchange.id, result.error,
                )

        logger.info(
            "Exchange %s: sent %d of %d assignment emails via %s",
            exchange.id, report.sent_count, report.total, self.provider.name,
        )
        return report

    def resend_one(self, exchange: Exchange, santa: Participant, force: bool = False) -> ResendResult:
        if santa.secret_sent_at is not None and not force:
            return ResendResult(participant_id=santa.id, status="already_sent")

        santa_id = santa.id
        recipient_id = self.store.recipient_of(santa_id)
        if force:
            result = self._deliver(exchange, santa, recipient_id)
            if result.success:
                santa.secret_sent_at = self.clock()
                self.store.commit()
        else:
            result = self._claimed_send(exchange, santa, recipient_id)
            if result is None:
                return ResendResult(participant_id=santa_id, status="already_sent")

        if not result.success:
            logger.warning("Resend to participant %s failed: %s", santa_id, result.error)
            return ResendResult(participant_id=santa_id, status="failed", error=result.error or "Send failed")

        logger.info("Resent assignment to participant %s (exchange %s)", santa_id, exchange.id)
        return ResendResult(participant_id=santa_id, status="sent")

    def questionnaire_url(self, participant: Participant) -> str:
        return f"{self.base_url.rstrip('/')}/q/{participant.token}"

    def send_invite(self, exchange: Exchange, participant: Participant) -> DeliveryResult:
        """Questionnaire invitation for one participant. Never raises."""
        message = EmailMessage(
            to=participant.email,
            subject=invite_subject(exchange),
            text=invite_text(exchange, participant, self.questionnaire_url(participant), self._organizer_name(exchange)),
            from_address=self.sender,
            tags={"type": "questionnaire-invite", "exchange": str(exchange.id)},
        )
        try:
            result = self.provider.send(message)
        except Exception as e:
            logger.exception("Provider %s raised on invite for participant %s", self.provider.name, participant.id)
            return DeliveryResult(success=False, error=f"Provider error: {e}")

        if result.success:
            logger.info("Questionnaire invite sent to participant %s (exchange %s)", participant.id, exchange.id)
        else:
            logger.warning("Questionnaire invite to participant %s failed: %s", participant.id, result.error)
        return result

    def notify_all_complete(self, exchange: Exchange, participant_count: int) -> bool:
        organizer = exchange.organizer
        if organizer is None or not organizer.email:
            logger.info("Exchange %s is ready; organizer has no email on file", exchange.id)
            return False

        message = EmailMessage(
            to=organizer.email,
            subject=all_complete_subject(exchange),
            text=all_complete_text(exchange, participant_count, self.base_url, organizer.name),
            from_address=self.sender,
            tags={"type": "all-complete", "exchange": str(exchange.id)},
        )
        try:
            result = self.provider.send(message)
        except Exception:
            logger.exception("Provider %s raised on all-complete notice for exchange %s", self.provider.name, exchange.id)
            return False

        if not result.success:
            logger.error("All-complete notice for exchange %s failed: %s", exchange.id, result.error)
            return False
        logger.info("All-complete notice sent to %s for exchange %s", organizer.email, exchange.id)
        return True
