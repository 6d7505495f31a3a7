"""
Shared fixtures.

  • app / client: app on in-memory SQLite with a recording email provider
  • provider: RecordingProvider; put an address in `fail_for` to make it fail
  • lifecycle: ExchangeLifecycle with a fixed clock and seeded random source
  • organizer: a stored Organizer
  • make_exchange(...): exchange with n participants, questionnaires optionally completed
"""

from __future__ import annotations

from datetime import datetime

import pytest

from shuffler import create_app
from shuffler.extensions import db
from shuffler.models import Organizer
from shuffler.security import hash_client_key
from shuffler.services.delivery import DeliveryResult
from shuffler.services.lifecycle import ExchangeLifecycle
from shuffler.services.notifications import NotificationOrchestrator
from shuffler.services.permutation import PseudoRandomSource
from shuffler.services.store import ExchangeStore


FIXED_NOW = datetime(2025, 12, 1, 18, 30, 0)


class RecordingProvider:
    name = "recording"

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.raise_for = set()

    def send(self, message):
        if message.to in self.raise_for:
            raise RuntimeError("provider exploded")
        self.sent.append(message)
        if message.to in self.fail_for:
            return DeliveryResult(success=False, error="mailbox unavailable")
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    def sent_to(self, address, kind=None):
        return [m for m in self.sent if m.to == address and (kind is None or m.tags.get("type") == kind)]

    def assignments_to(self, address):
        return self.sent_to(address, "secret-santa-assignment")

    def invites_to(self, address):
        return self.sent_to(address, "questionnaire-invite")


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def app(provider):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "DELIVERY_PROVIDER": provider,
        "RANDOM_SOURCE": PseudoRandomSource(1234),
        "BASE_URL": "http://santa.test",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def lifecycle(app, provider):
    store = ExchangeStore()
    notifier = NotificationOrchestrator(
        store, provider, clock=lambda: FIXED_NOW, sender="Santa <santa@example.com>", base_url="http://santa.test"
    )
    return ExchangeLifecycle(store, notifier, rng=PseudoRandomSource(42), clock=lambda: FIXED_NOW)


@pytest.fixture
def organizer(app):
    o = Organizer(name="Olive", email="olive@example.com", passkey_hash=hash_client_key("a" * 64))
    db.session.add(o)
    db.session.commit()
    return o


@pytest.fixture
def make_exchange(lifecycle, organizer):
    def _factory(n: int = 4, complete: bool = True, title: str = "Office Party"):
        exchange = lifecycle.create_exchange(organizer.id, title, budget_min=20, budget_max=40).value
        participants = []
        for i in range(n):
            p = lifecycle.add_participant(exchange.id, f"person{i}@example.com", f"Person {i}").value
            participants.append(p)
        if complete:
            for p in participants:
                result = lifecycle.submit_questionnaire(
                    p.token, {"name": p.name, "favorite_color": f"color-{p.id}"}
                )
                assert result.ok, result
        return exchange, participants

    return _factory


@pytest.fixture
def fixed_now():
    return FIXED_NOW
