from __future__ import annotations

import base64

import pytest

from shuffler.errors import ValidationError
from shuffler.services.permutation import PseudoRandomSource
from shuffler.services.quick_shuffle import QuickPair, decode_pairs, encode_pairs, quick_shuffle
from shuffler.services.validation import Valid, validate


def test_pairs_form_one_chain():
    names = ["Alice", "Bob", "Carol", "Dave", "Eve"]
    pairs = quick_shuffle(names, PseudoRandomSource(8))
    assert [p.santa for p in pairs] == names
    assert isinstance(validate({p.santa: p.recipient for p in pairs}, names), Valid)


def test_blank_names_are_dropped():
    pairs = quick_shuffle(["  Alice ", "", "   ", "Bob"], PseudoRandomSource(1))
    assert pairs == [QuickPair("Alice", "Bob"), QuickPair("Bob", "Alice")]


@pytest.mark.parametrize("names", [[], ["Solo"], ["", "Solo"]])
def test_needs_two_names(names):
    with pytest.raises(ValidationError):
        quick_shuffle(names, PseudoRandomSource(1))


def test_names_must_be_unique_ignoring_case():
    with pytest.raises(ValidationError, match="unique"):
        quick_shuffle(["Alice", "alice", "Bob"], PseudoRandomSource(1))


def test_share_link_survives_decoding():
    pairs = quick_shuffle(["Zoë", "Émile", "Kai"], PseudoRandomSource(3))
    encoded = encode_pairs(pairs)
    assert "=" not in encoded
    assert "+" not in encoded and "/" not in encoded
    assert decode_pairs(encoded) == pairs


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b'{"santa": "A", "recipient": "B"}',
        b'[{"santa": "A"}]',
        b'[{"santa": 1, "recipient": "B"}]',
    ],
)
def test_malformed_links_decode_to_none(raw):
    encoded = base64.urlsafe_b64encode(raw).decode().rstrip("=")
    assert decode_pairs(encoded) is None


def test_non_ascii_garbage_is_none():
    assert decode_pairs("☃☃☃") is None
