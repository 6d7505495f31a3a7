from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, current_app, jsonify, url_for
from flask.views import MethodView

from ..errors import NotFoundError, ValidationError
from ..policies import json_body, unwrap
from ..services.lifecycle import QUESTIONNAIRE_OPEN, get_lifecycle
from ..services.quick_shuffle import decode_pairs, encode_pairs, quick_shuffle
from ..services.store import ExchangeStore


public_bp = Blueprint("public", __name__)


class QuestionnaireView(MethodView):
    """Participants fill in their questionnaire through their private link."""

    def get(self, token: str):
        participant = ExchangeStore().get_participant_by_token(token)
        exchange = participant.exchange
        q = participant.questionnaire
        return jsonify({
            "exchange": {"title": exchange.title, "status": exchange.status.value},
            "participant": {"name": participant.name, "email": participant.email},
            "completed": participant.questionnaire_completed,
            "open": exchange.status in QUESTIONNAIRE_OPEN,
            "questionnaire": q.to_dict() if q else None,
        })

    def put(self, token: str):
        questionnaire = unwrap(get_lifecycle().submit_questionnaire(token, json_body()))
        return jsonify({"completed": True, "questionnaire": questionnaire.to_dict()})


class QuickShuffleView(MethodView):
    def post(self):
        names = json_body().get("names")
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ValidationError("names must be a list of strings.")
        pairs = quick_shuffle(names, current_app.extensions["random_source"])
        encoded = encode_pairs(pairs)
        return jsonify({
            "pairs": [asdict(p) for p in pairs],
            "share_url": url_for("public.quick_shuffle_result", encoded=encoded, _external=True),
        })


class QuickShuffleResultView(MethodView):
    def get(self, encoded: str):
        pairs = decode_pairs(encoded)
        if pairs is None:
            raise NotFoundError("That shuffle link is not valid.")
        return jsonify({"pairs": [asdict(p) for p in pairs]})


public_bp.add_url_rule(
    "/q/<token>", view_func=QuestionnaireView.as_view("questionnaire"), methods=["GET", "PUT"]
)
public_bp.add_url_rule("/quick-shuffle", view_func=QuickShuffleView.as_view("quick_shuffle"), methods=["POST"])
public_bp.add_url_rule("/quick-shuffle/<encoded>", view_func=QuickShuffleResultView.as_view("quick_shuffle_result"))
