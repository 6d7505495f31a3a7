"""
Reveal flow: send_secrets, partial failure and resend.

Documented behaviour under test: after a partial send the exchange stays
`shuffled` with secrets_sent_at set, and completing the missing recipients
through resend_one does NOT promote it to `complete`.
"""

from __future__ import annotations

import pytest

from shuffler.errors import NotFoundError, StateConflictError
from shuffler.extensions import db
from shuffler.models import Exchange, ExchangeStatus, Participant, Questionnaire
from shuffler.services.store import ExchangeStore


@pytest.fixture
def shuffled(lifecycle, make_exchange):
    exchange, participants = make_exchange(4)
    assert lifecycle.shuffle(exchange.id).ok
    return exchange, participants


def _exchange(exchange_id):
    return db.session.get(Exchange, exchange_id)


class TestSendSecrets:
    def test_all_delivered_completes_exchange(self, lifecycle, shuffled, provider, fixed_now):
        exchange, participants = shuffled
        report = lifecycle.send_secrets(exchange.id).value

        assert report.sent_count == 4
        assert report.failures == []
        stored = _exchange(exchange.id)
        assert stored.status == ExchangeStatus.COMPLETE
        assert stored.secrets_sent_at == fixed_now
        assert stored.reveal_state == "sent"

        edges = ExchangeStore().edge_map(exchange.id)
        names = {p.id: p.name for p in participants}
        for p in participants:
            (mail,) = provider.assignments_to(p.email)
            assert f"You are the Secret Santa for: {names[edges[p.id]]}" in mail.text
            assert f"color-{edges[p.id]}" in mail.text
            assert "Budget: $20 - $40" in mail.text
            assert p.secret_sent_at == fixed_now

    def test_one_failure_leaves_exchange_shuffled(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        unlucky = participants[2]
        provider.fail_for.add(unlucky.email)

        report = lifecycle.send_secrets(exchange.id).value

        assert report.sent_count == 3
        assert report.failures == [unlucky.id]
        assert report.errors[unlucky.id] == "mailbox unavailable"
        stored = _exchange(exchange.id)
        assert stored.status == ExchangeStatus.SHUFFLED
        assert stored.secrets_sent_at is not None
        assert stored.reveal_state == "partial"

    def test_resend_after_partial_does_not_promote_to_complete(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        unlucky = participants[2]
        provider.fail_for.add(unlucky.email)
        lifecycle.send_secrets(exchange.id)

        provider.fail_for.clear()
        result = lifecycle.resend_one(unlucky.id).value

        assert result.status == "sent"
        assert len(provider.assignments_to(unlucky.email)) == 2
        # Every recipient now has their email, but promotion is not automatic.
        assert _exchange(exchange.id).status == ExchangeStatus.SHUFFLED

    def test_resend_skips_already_notified(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        lifecycle.send_secrets(exchange.id)
        lucky = participants[0]

        result = lifecycle.resend_one(lucky.id).value
        assert result.status == "already_sent"
        assert len(provider.assignments_to(lucky.email)) == 1

        forced = lifecycle.resend_one(lucky.id, force=True).value
        assert forced.status == "sent"
        assert len(provider.assignments_to(lucky.email)) == 2

    def test_failed_resend_is_reported_not_raised(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        provider.fail_for.add(participants[1].email)
        lifecycle.send_secrets(exchange.id)

        result = lifecycle.resend_one(participants[1].id)
        assert result.ok
        assert result.value.status == "failed"
        assert result.value.error == "mailbox unavailable"

    def test_total_failure_changes_nothing(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        provider.fail_for.update(p.email for p in participants)

        report = lifecycle.send_secrets(exchange.id).value

        assert report.sent_count == 0
        assert sorted(report.failures) == sorted(p.id for p in participants)
        stored = _exchange(exchange.id)
        assert stored.status == ExchangeStatus.SHUFFLED
        assert stored.secrets_sent_at is None
        # nothing was recorded, so the whole batch can be retried
        provider.fail_for.clear()
        assert lifecycle.send_secrets(exchange.id).value.sent_count == 4

    def test_provider_exception_is_isolated(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        provider.raise_for.add(participants[0].email)

        report = lifecycle.send_secrets(exchange.id).value

        assert report.sent_count == 3
        assert report.failures == [participants[0].id]
        assert "provider exploded" in report.errors[participants[0].id]

    def test_missing_recipient_questionnaire(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        edges = ExchangeStore().edge_map(exchange.id)
        giver = participants[0]
        recipient_id = edges[giver.id]
        db.session.delete(db.session.get(Participant, recipient_id).questionnaire)
        db.session.commit()

        report = lifecycle.send_secrets(exchange.id).value

        assert report.failures == [giver.id]
        assert report.errors[giver.id] == "Recipient questionnaire not found"
        assert db.session.query(Questionnaire).count() == 3

    def test_second_send_after_partial_conflicts(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        provider.fail_for.add(participants[3].email)
        lifecycle.send_secrets(exchange.id)

        again = lifecycle.send_secrets(exchange.id)
        assert isinstance(again.error, StateConflictError)

    def test_send_after_complete_conflicts(self, lifecycle, shuffled):
        exchange, _ = shuffled
        lifecycle.send_secrets(exchange.id)
        assert isinstance(lifecycle.send_secrets(exchange.id).error, StateConflictError)


class Interrupted(BaseException):
    """The worker dies between two sends."""


class TestInterruptedReveal:
    def _crash_on(self, provider, monkeypatch, address):
        real_send = provider.send

        def send(message):
            if message.to == address:
                raise Interrupted()
            return real_send(message)

        monkeypatch.setattr(provider, "send", send)
        return real_send

    def test_retry_after_interruption_sends_each_email_once(self, lifecycle, shuffled, provider, monkeypatch):
        exchange, participants = shuffled
        real_send = self._crash_on(provider, monkeypatch, participants[2].email)

        with pytest.raises(Interrupted):
            lifecycle.send_secrets(exchange.id)

        assert _exchange(exchange.id).secrets_sent_at is None
        # the claim on the interrupted recipient was given back
        assert db.session.get(Participant, participants[2].id).secret_sent_at is None

        monkeypatch.setattr(provider, "send", real_send)
        report = lifecycle.send_secrets(exchange.id).value

        assert report.sent_count == 4
        assert report.already_sent == [participants[0].id, participants[1].id]
        assert report.failures == []
        for p in participants:
            assert len(provider.assignments_to(p.email)) == 1
        assert _exchange(exchange.id).status == ExchangeStatus.COMPLETE

    def test_interrupted_batch_can_be_finished_with_resend(self, lifecycle, shuffled, provider, monkeypatch):
        exchange, participants = shuffled
        real_send = self._crash_on(provider, monkeypatch, participants[2].email)
        with pytest.raises(Interrupted):
            lifecycle.send_secrets(exchange.id)
        monkeypatch.setattr(provider, "send", real_send)

        statuses = [lifecycle.resend_one(p.id).value.status for p in participants]

        assert statuses == ["already_sent", "already_sent", "sent", "sent"]
        for p in participants:
            assert len(provider.assignments_to(p.email)) == 1

    def test_resend_before_reveal_is_not_repeated(self, lifecycle, shuffled, provider):
        exchange, participants = shuffled
        assert lifecycle.resend_one(participants[1].id).value.status == "sent"

        report = lifecycle.send_secrets(exchange.id).value

        assert report.already_sent == [participants[1].id]
        assert report.sent_count == 4
        for p in participants:
            assert len(provider.assignments_to(p.email)) == 1

    def test_recipient_claimed_by_concurrent_run_is_skipped(self, lifecycle, shuffled, provider, monkeypatch, fixed_now):
        exchange, participants = shuffled
        other = participants[3]
        real_send = provider.send

        def send(message):
            if message.to == participants[0].email:
                # a second request claims a later recipient mid-batch
                store = ExchangeStore()
                assert store.claim_secret(other.id, fixed_now)
                store.commit()
            return real_send(message)

        monkeypatch.setattr(provider, "send", send)
        report = lifecycle.send_secrets(exchange.id).value

        assert report.already_sent == [other.id]
        assert provider.assignments_to(other.email) == []
        assert ExchangeStore().claim_secret(other.id, fixed_now) is False


class TestGuards:
    def test_send_before_shuffle(self, lifecycle, make_exchange, provider):
        exchange, participants = make_exchange(3)
        result = lifecycle.send_secrets(exchange.id)
        assert isinstance(result.error, StateConflictError)
        assert all(not provider.assignments_to(p.email) for p in participants)

    def test_resend_before_shuffle(self, lifecycle, make_exchange):
        _, participants = make_exchange(3)
        assert isinstance(lifecycle.resend_one(participants[0].id).error, StateConflictError)

    def test_resend_unknown_participant(self, lifecycle):
        assert isinstance(lifecycle.resend_one(12345).error, NotFoundError)

    def test_send_unknown_exchange(self, lifecycle):
        assert isinstance(lifecycle.send_secrets(12345).error, NotFoundError)
