from __future__ import annotations

import enum
from datetime import datetime, timezone

from flask_login import UserMixin

from .extensions import db, login_manager


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExchangeStatus(str, enum.Enum):
    DRAFT = "draft"
    COLLECTING = "collecting"
    READY = "ready"
    SHUFFLED = "shuffled"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def at_least(self, other: "ExchangeStatus") -> bool:
        return self.rank >= other.rank


_STATUS_ORDER = list(ExchangeStatus)


class Organizer(UserMixin, db.Model):
    __tablename__ = "organizers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True)

    # salted Passlib hash of SHA-256(passphrase) from the client
    passkey_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    exchanges = db.relationship("Exchange", back_populates="organizer", lazy="dynamic")


class Exchange(db.Model):
    __tablename__ = "exchanges"

    id = db.Column(db.Integer, primary_key=True)
    organizer_id = db.Column(db.Integer, db.ForeignKey("organizers.id"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    budget_min = db.Column(db.Integer, nullable=True)
    budget_max = db.Column(db.Integer, nullable=True)
    exchange_date = db.Column(db.String(32), nullable=True)

    status = db.Column(
        db.Enum(ExchangeStatus, native_enum=False, values_callable=lambda e: [m.value for m in e], length=16),
        default=ExchangeStatus.DRAFT,
        nullable=False,
        index=True,
    )
    shuffled_at = db.Column(db.DateTime, nullable=True)
    # Set on full or partial reveal; status tells the two apart.
    secrets_sent_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    organizer = db.relationship("Organizer", back_populates="exchanges")
    participants = db.relationship(
        "Participant",
        back_populates="exchange",
        cascade="all, delete-orphan",
        order_by="Participant.id",
    )

    @property
    def reveal_state(self) -> str:
        if self.secrets_sent_at is None:
            return "pending"
        if self.status == ExchangeStatus.COMPLETE:
            return "sent"
        return "partial"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
            "exchange_date": self.exchange_date,
            "status": self.status.value,
            "shuffled_at": self.shuffled_at.isoformat() if self.shuffled_at else None,
            "secrets_sent_at": self.secrets_sent_at.isoformat() if self.secrets_sent_at else None,
            "reveal_state": self.reveal_state,
        }


class Participant(db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    exchange_id = db.Column(
        db.Integer, db.ForeignKey("exchanges.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(120), nullable=True)

    # Questionnaire link secret
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)

    questionnaire_completed_at = db.Column(db.DateTime, nullable=True)
    # Last successful delivery of this participant's assignment
    secret_sent_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    exchange = db.relationship("Exchange", back_populates="participants")
    questionnaire = db.relationship(
        "Questionnaire",
        back_populates="participant",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("exchange_id", "email", name="uq_participant_exchange_email"),
    )

    @property
    def questionnaire_completed(self) -> bool:
        return self.questionnaire_completed_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exchange_id": self.exchange_id,
            "email": self.email,
            "name": self.name,
            "questionnaire_completed": self.questionnaire_completed,
            "secret_sent": self.secret_sent_at is not None,
        }


QUESTIONNAIRE_FIELDS = (
    "never_buy_myself",
    "please_no",
    "spare_time",
    "other_loves",
    "favorite_color",
    "favorite_sports_team",
    "favorite_pattern",
    "favorite_supplies",
    "favorite_snacks",
    "favorite_beverages",
    "favorite_candy",
    "favorite_fragrances",
    "favorite_restaurant",
    "favorite_store",
    "favorite_christmas_movie",
    "favorite_christmas_song",
)


class Questionnaire(db.Model):
    __tablename__ = "questionnaires"

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    name = db.Column(db.String(120), nullable=False)

    never_buy_myself = db.Column(db.Text)
    please_no = db.Column(db.Text)
    spare_time = db.Column(db.Text)
    other_loves = db.Column(db.Text)
    favorite_color = db.Column(db.Text)
    favorite_sports_team = db.Column(db.Text)
    favorite_pattern = db.Column(db.Text)
    favorite_supplies = db.Column(db.Text)
    favorite_snacks = db.Column(db.Text)
    favorite_beverages = db.Column(db.Text)
    favorite_candy = db.Column(db.Text)
    favorite_fragrances = db.Column(db.Text)
    favorite_restaurant = db.Column(db.Text)
    favorite_store = db.Column(db.Text)
    favorite_christmas_movie = db.Column(db.Text)
    favorite_christmas_song = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    participant = db.relationship("Participant", back_populates="questionnaire")

    def answers(self) -> dict[str, str]:
        """Non-empty answers only."""
        out = {}
        for field in QUESTIONNAIRE_FIELDS:
            value = getattr(self, field)
            if value:
                out[field] = value
        return out

    def to_dict(self) -> dict:
        return {"name": self.name, **{f: getattr(self, f) for f in QUESTIONNAIRE_FIELDS}}


class AssignmentEdge(db.Model):
    """
    One giver -> recipient edge. The full set for an exchange is the
    assignment; it is written once at shuffle time and never updated.
    """
    __tablename__ = "assignment_edges"

    id = db.Column(db.Integer, primary_key=True)
    exchange_id = db.Column(
        db.Integer, db.ForeignKey("exchanges.id", ondelete="CASCADE"), nullable=False, index=True
    )
    giver_id = db.Column(
        db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Encrypted recipient participant id (Fernet token string).
    recipient_ciphertext = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(Organizer, int(user_id))
