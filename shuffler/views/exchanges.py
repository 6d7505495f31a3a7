from __future__ import annotations

from flask import Blueprint, jsonify, url_for
from flask_login import current_user

from ..errors import ExternalServiceError
from ..models import Exchange, ExchangeStatus
from ..policies import OrganizerRequiredMixin, json_body, owned_exchange, owned_participant, unwrap
from ..services.lifecycle import SHUFFLEABLE, get_lifecycle


exchanges_bp = Blueprint("exchanges", __name__)


def _participant_dict(p) -> dict:
    data = p.to_dict()
    data["questionnaire_url"] = url_for("public.questionnaire", token=p.token, _external=True)
    return data


class ExchangeListView(OrganizerRequiredMixin):
    def get(self):
        exchanges = current_user.exchanges.order_by(Exchange.created_at.desc()).all()
        return jsonify([e.to_dict() for e in exchanges])

    def post(self):
        data = json_body()
        exchange = unwrap(get_lifecycle().create_exchange(
            current_user.id,
            data.get("title"),
            description=data.get("description"),
            budget_min=data.get("budget_min"),
            budget_max=data.get("budget_max"),
            exchange_date=data.get("exchange_date"),
        ))
        return jsonify(exchange.to_dict()), 201


class ExchangeDetailView(OrganizerRequiredMixin):
    def get(self, exchange_id: int):
        exchange = owned_exchange(exchange_id)
        participants = exchange.participants
        completed = sum(1 for p in participants if p.questionnaire_completed)
        data = exchange.to_dict()
        data["participants"] = [_participant_dict(p) for p in participants]
        data["completed_count"] = completed
        data["can_shuffle"] = (
            len(participants) >= 2
            and completed == len(participants)
            and exchange.status in SHUFFLEABLE
        )
        data["can_send_secrets"] = exchange.status == ExchangeStatus.SHUFFLED and exchange.secrets_sent_at is None
        return jsonify(data)


class ExchangeStatusView(OrganizerRequiredMixin):
    def get(self, exchange_id: int):
        owned_exchange(exchange_id)
        status = unwrap(get_lifecycle().status(exchange_id))
        return jsonify({"exchange_id": exchange_id, "status": status.value})


class ParticipantListView(OrganizerRequiredMixin):
    def post(self, exchange_id: int):
        owned_exchange(exchange_id)
        data = json_body()
        participant = unwrap(get_lifecycle().add_participant(exchange_id, data.get("email"), data.get("name")))
        return jsonify(_participant_dict(participant)), 201


class ParticipantDetailView(OrganizerRequiredMixin):
    def patch(self, participant_id: int):
        owned_participant(participant_id)
        data = json_body()
        participant = unwrap(get_lifecycle().update_participant(
            participant_id, name=data.get("name"), email=data.get("email")
        ))
        return jsonify(_participant_dict(participant))

    def delete(self, participant_id: int):
        owned_participant(participant_id)
        unwrap(get_lifecycle().remove_participant(participant_id))
        return "", 204


class ShuffleView(OrganizerRequiredMixin):
    def post(self, exchange_id: int):
        owned_exchange(exchange_id)
        result = unwrap(get_lifecycle().shuffle(exchange_id))
        return jsonify(result.to_dict())


class SendSecretsView(OrganizerRequiredMixin):
    def post(self, exchange_id: int):
        owned_exchange(exchange_id)
        report = unwrap(get_lifecycle().send_secrets(exchange_id))
        status = 200 if report.sent_count else 502
        return jsonify(report.to_dict()), status


class InviteView(OrganizerRequiredMixin):
    def post(self, participant_id: int):
        owned_participant(participant_id)
        result = unwrap(get_lifecycle().resend_invite(participant_id))
        if not result.success:
            raise ExternalServiceError(f"Could not send the invite to participant {participant_id}: {result.error}")
        return jsonify({"participant_id": participant_id, "status": "sent", "message_id": result.message_id})


class ResendView(OrganizerRequiredMixin):
    def post(self, participant_id: int):
        owned_participant(participant_id)
        force = bool(json_body().get("force", False))
        result = unwrap(get_lifecycle().resend_one(participant_id, force=force))
        if not result.success:
            raise ExternalServiceError(f"Could not deliver to participant {participant_id}: {result.error}")
        return jsonify(result.to_dict())


exchanges_bp.add_url_rule("/exchanges", view_func=ExchangeListView.as_view("list"), methods=["GET", "POST"])
exchanges_bp.add_url_rule("/exchanges/<int:exchange_id>", view_func=ExchangeDetailView.as_view("detail"))
exchanges_bp.add_url_rule("/exchanges/<int:exchange_id>/status", view_func=ExchangeStatusView.as_view("status"))
exchanges_bp.add_url_rule(
    "/exchanges/<int:exchange_id>/participants",
    view_func=ParticipantListView.as_view("add_participant"),
    methods=["POST"],
)
exchanges_bp.add_url_rule(
    "/participants/<int:participant_id>",
    view_func=ParticipantDetailView.as_view("participant"),
    methods=["PATCH", "DELETE"],
)
exchanges_bp.add_url_rule("/exchanges/<int:exchange_id>/shuffle", view_func=ShuffleView.as_view("shuffle"), methods=["POST"])
exchanges_bp.add_url_rule(
    "/exchanges/<int:exchange_id>/send-secrets",
    view_func=SendSecretsView.as_view("send_secrets"),
    methods=["POST"],
)
exchanges_bp.add_url_rule(
    "/participants/<int:participant_id>/resend",
    view_func=ResendView.as_view("resend"),
    methods=["POST"],
)
exchanges_bp.add_url_rule(
    "/participants/<int:participant_id>/invite",
    view_func=InviteView.as_view("invite"),
    methods=["POST"],
)
