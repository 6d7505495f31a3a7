from __future__ import annotations

from flask import jsonify, request
from flask.views import MethodView
from flask_login import current_user

from .errors import Err, NotFoundError, ValidationError
from .models import Exchange, Participant
from .services.store import ExchangeStore


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def unwrap(result):
    """Value of an Ok, or raise the Err's error for the JSON error handler."""
    if isinstance(result, Err):
        raise result.error
    return result.value


def owned_exchange(exchange_id: int) -> Exchange:
    exchange = ExchangeStore().get_exchange(exchange_id)
    if exchange.organizer_id != current_user.id:
        # Same answer as a missing exchange
        raise NotFoundError(f"Exchange {exchange_id} not found.")
    return exchange


def owned_participant(participant_id: int) -> Participant:
    participant = ExchangeStore().get_participant(participant_id)
    if participant.exchange.organizer_id != current_user.id:
        raise NotFoundError(f"Participant {participant_id} not found.")
    return participant


class OrganizerRequiredMixin(MethodView):
    def dispatch_request(self, *args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "unauthorized", "message": "Log in as an organizer first."}), 401
        return super().dispatch_request(*args, **kwargs)
