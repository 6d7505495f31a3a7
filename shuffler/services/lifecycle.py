"""
Exchange lifecycle: draft -> collecting -> ready -> shuffled -> complete.

Status only moves forward. Every status change is a conditional UPDATE on the
current status, so two requests racing on the same exchange cannot both win.
Public operations return Ok(value) or Err(error) instead of raising.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Mapping, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    Err,
    InvariantViolation,
    Ok,
    ShufflerError,
    StateConflictError,
    ValidationError,
)
from ..models import QUESTIONNAIRE_FIELDS, Exchange, ExchangeStatus, Participant, Questionnaire, utcnow
from ..security import generate_participant_token
from .delivery import DeliveryResult, format_sender
from .notifications import NotificationOrchestrator, ResendResult, SendReport
from .permutation import RandomSource, create_chain, default_random_source
from .store import ExchangeStore
from .validation import validate


logger = logging.getLogger(__name__)

EDITABLE = (ExchangeStatus.DRAFT, ExchangeStatus.COLLECTING)
SHUFFLEABLE = (ExchangeStatus.COLLECTING, ExchangeStatus.READY)
QUESTIONNAIRE_OPEN = (ExchangeStatus.COLLECTING, ExchangeStatus.READY)
REVEALED = (ExchangeStatus.SHUFFLED, ExchangeStatus.COMPLETE)


@dataclass(frozen=True)
class ShuffleResult:
    exchange_id: int
    assignment_count: int
    shuffled_at: datetime

    def to_dict(self) -> dict:
        return {
            "exchange_id": self.exchange_id,
            "assignment_count": self.assignment_count,
            "shuffled_at": self.shuffled_at.isoformat(),
        }


def _boundary(fn):
    """
    Run a lifecycle operation, turning ShufflerError into Err.

    Any failure rolls back whatever the operation staged. Errors outside the
    taxonomy are re-raised after the rollback.
    """
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return Ok(fn(self, *args, **kwargs))
        except ShufflerError as e:
            self.store.rollback()
            return Err(e)
        except Exception:
            self.store.rollback()
            raise
    return wrapper


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _optional_int(value: Any, field: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number.")
    if number < 0:
        raise ValidationError(f"{field} cannot be negative.")
    return number


class ExchangeLifecycle:
    def __init__(
        self,
        store: ExchangeStore,
        notifier: NotificationOrchestrator,
        rng: Optional[RandomSource] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.rng = rng or default_random_source()
        self.clock = clock

    # --- helpers ---

    def _require(self, exchange: Exchange, allowed, message: str) -> None:
        if exchange.status not in allowed:
            raise StateConflictError(message)

    def _maybe_ready(self, exchange: Exchange) -> bool:
        """collecting -> ready once every participant has completed their questionnaire."""
        if exchange.status != ExchangeStatus.COLLECTING:
            return False
        participants = self.store.list_participants(exchange.id)
        if not participants or not all(p.questionnaire_completed for p in participants):
            return False
        moved = self.store.transition_status(exchange.id, [ExchangeStatus.COLLECTING], ExchangeStatus.READY)
        if moved:
            logger.info("Exchange %s: all %d questionnaires complete, now ready", exchange.id, len(participants))
        return moved

    # --- collection ---

    @_boundary
    def create_exchange(self, organizer_id: int, title: str, **fields) -> Exchange:
        title = _clean(title)
        if not title:
            raise ValidationError("Title is required.")
        budget_min = _optional_int(fields.get("budget_min"), "budget_min")
        budget_max = _optional_int(fields.get("budget_max"), "budget_max")
        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            raise ValidationError("budget_min cannot exceed budget_max.")

        exchange = Exchange(
            organizer_id=organizer_id,
            title=title,
            description=_clean(fields.get("description")),
            budget_min=budget_min,
            budget_max=budget_max,
            exchange_date=_clean(fields.get("exchange_date")),
            status=ExchangeStatus.DRAFT,
        )
        self.store.add(exchange)
        self.store.commit()
        logger.info("Exchange %s created by organizer %s", exchange.id, organizer_id)
        return exchange

    @_boundary
    def add_participant(self, exchange_id: int, email: str, name: Optional[str] = None) -> Participant:
        exchange = self.store.get_exchange(exchange_id)
        self._require(exchange, EDITABLE, "Participants can no longer be added to this exchange.")

        email = (_clean(email) or "").lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required.")
        if self.store.find_participant_by_email(exchange_id, email):
            raise ValidationError("That email is already in this exchange.")

        participant = Participant(
            exchange_id=exchange_id,
            email=email,
            name=_clean(name),
            token=generate_participant_token(),
        )
        self.store.add(participant)

        if exchange.status == ExchangeStatus.DRAFT:
            if not self.store.transition_status(exchange_id, [ExchangeStatus.DRAFT], ExchangeStatus.COLLECTING):
                raise StateConflictError("Exchange changed while adding a participant. Please retry.")
            logger.info("Exchange %s: first participant added, now collecting", exchange_id)

        try:
            self.store.commit()
        except IntegrityError:
            self.store.rollback()
            raise ValidationError("That email is already in this exchange.")

        self.notifier.send_invite(exchange, participant)
        return participant

    @_boundary
    def update_participant(self, participant_id: int, name: Optional[str] = None, email: Optional[str] = None) -> Participant:
        participant = self.store.get_participant(participant_id)
        self._require(participant.exchange, EDITABLE, "Participants can no longer be edited.")

        if email is not None:
            email = (_clean(email) or "").lower()
            if not email or "@" not in email:
                raise ValidationError("A valid email is required.")
            other = self.store.find_participant_by_email(participant.exchange_id, email)
            if other is not None and other.id != participant.id:
                raise ValidationError("That email is already in this exchange.")
            participant.email = email
        if name is not None:
            participant.name = _clean(name)

        self.store.commit()
        return participant

    @_boundary
    def resend_invite(self, participant_id: int) -> DeliveryResult:
        participant = self.store.get_participant(participant_id)
        exchange = participant.exchange
        if exchange.status.at_least(ExchangeStatus.SHUFFLED):
            raise StateConflictError("Questionnaires are closed for this exchange.")
        if participant.questionnaire_completed:
            raise ValidationError("Questionnaire already completed.")
        return self.notifier.send_invite(exchange, participant)

    @_boundary
    def remove_participant(self, participant_id: int) -> int:
        participant = self.store.get_participant(participant_id)
        exchange = participant.exchange
        self._require(exchange, EDITABLE, "Participants can no longer be removed.")

        self.store.delete(participant)
        became_ready = self._maybe_ready(exchange)
        self.store.commit()

        if became_ready:
            self.notifier.notify_all_complete(exchange, len(self.store.list_participants(exchange.id)))
        return participant_id

    @_boundary
    def submit_questionnaire(self, token: str, answers: Mapping[str, Any]) -> Questionnaire:
        participant = self.store.get_participant_by_token(token)
        exchange = participant.exchange
        self._require(exchange, QUESTIONNAIRE_OPEN, "Questionnaires are closed for this exchange.")

        name = _clean(answers.get("name")) or participant.name
        if not name:
            raise ValidationError("Your name is required.")

        questionnaire = participant.questionnaire
        if questionnaire is None:
            questionnaire = Questionnaire(participant=participant, name=name)
            self.store.add(questionnaire)
        questionnaire.name = name
        for field in QUESTIONNAIRE_FIELDS:
            if field in answers:
                setattr(questionnaire, field, _clean(answers[field]))

        if participant.name is None:
            participant.name = name
        if participant.questionnaire_completed_at is None:
            participant.questionnaire_completed_at = self.clock()

        became_ready = self._maybe_ready(exchange)
        self.store.commit()

        if became_ready:
            self.notifier.notify_all_complete(exchange, len(self.store.list_participants(exchange.id)))
        return questionnaire

    # --- shuffle ---

    @_boundary
    def shuffle(self, exchange_id: int) -> ShuffleResult:
        exchange = self.store.get_exchange(exchange_id)
        if exchange.status.at_least(ExchangeStatus.SHUFFLED):
            raise StateConflictError("Exchange has already been shuffled.")

        participants = self.store.list_participants(exchange_id)
        if len(participants) < 2:
            raise ValidationError("You need at least 2 participants to shuffle.")
        waiting = sum(1 for p in participants if not p.questionnaire_completed)
        if waiting:
            raise ValidationError(
                f"Waiting for {waiting} more questionnaire{'s' if waiting > 1 else ''} to be completed."
            )
        self._require(exchange, SHUFFLEABLE, "Exchange is not ready to shuffle.")

        ids = [p.id for p in participants]
        mapping = create_chain(ids, self.rng)

        verdict = validate(mapping, ids)
        if not verdict:
            logger.critical(
                "Shuffle for exchange %s produced an invalid assignment (%s random source): %s",
                exchange_id, self.rng.name, verdict.reason,
            )
            raise InvariantViolation("Shuffle validation failed. Nothing was saved.", detail=verdict.reason)

        now = self.clock()
        if not self.store.transition_status(exchange_id, SHUFFLEABLE, ExchangeStatus.SHUFFLED, shuffled_at=now):
            raise StateConflictError("Exchange has already been shuffled.")
        self.store.write_edges(exchange_id, mapping)
        self.store.commit()

        logger.info("Exchange %s shuffled: %d assignments", exchange_id, len(mapping))
        return ShuffleResult(exchange_id=exchange_id, assignment_count=len(mapping), shuffled_at=now)

    # --- reveal ---

    @_boundary
    def send_secrets(self, exchange_id: int) -> SendReport:
        exchange = self.store.get_exchange(exchange_id)
        if exchange.status == ExchangeStatus.COMPLETE:
            raise StateConflictError("Secrets have already been sent.")
        self._require(exchange, [ExchangeStatus.SHUFFLED], "Exchange must be shuffled before sending secrets.")
        if exchange.secrets_sent_at is not None:
            raise StateConflictError("Secrets were already sent to some participants. Resend individually.")

        report = self.notifier.send_all(exchange)
        now = self.clock()
        unrevealed = Exchange.secrets_sent_at.is_(None)

        if report.all_sent:
            moved = self.store.transition_status(
                exchange_id, [ExchangeStatus.SHUFFLED], ExchangeStatus.COMPLETE, unrevealed, secrets_sent_at=now
            )
        elif report.sent_count > 0:
            # partial: keep shuffled, timestamp marks the reveal as started
            moved = self.store.update_exchange(exchange_id, [ExchangeStatus.SHUFFLED], unrevealed, secrets_sent_at=now)
        else:
            logger.error("Exchange %s: no assignment emails could be sent", exchange_id)
            return report

        if not moved:
            logger.warning("Exchange %s: reveal state was changed by a concurrent request", exchange_id)
        self.store.commit()
        return report

    @_boundary
    def resend_one(self, participant_id: int, force: bool = False) -> ResendResult:
        participant = self.store.get_participant(participant_id)
        exchange = participant.exchange
        self._require(exchange, REVEALED, "Assignments have not been shuffled yet.")
        # No promotion to complete here, even if this was the last outstanding recipient.
        return self.notifier.resend_one(exchange, participant, force=force)

    @_boundary
    def status(self, exchange_id: int) -> ExchangeStatus:
        return self.store.get_exchange(exchange_id).status


def get_lifecycle() -> ExchangeLifecycle:
    """Lifecycle wired to the current app's session, provider and random source."""
    store = ExchangeStore()
    notifier = NotificationOrchestrator(
        store,
        current_app.extensions["delivery_provider"],
        clock=utcnow,
        sender=format_sender(current_app.config),
        base_url=current_app.config.get("BASE_URL", ""),
    )
    return ExchangeLifecycle(store, notifier, rng=current_app.extensions["random_source"], clock=utcnow)


