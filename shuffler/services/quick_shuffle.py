"""Account-free shuffle of a list of names, shareable as a single link."""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from ..errors import ValidationError
from .permutation import RandomSource, sattolo_shuffle


MAX_NAMES = 100


@dataclass(frozen=True)
class QuickPair:
    santa: str
    recipient: str


def quick_shuffle(names: Iterable[str], rng: RandomSource) -> list[QuickPair]:
    cleaned = [n.strip() for n in names if n and n.strip()]
    if len(cleaned) < 2:
        raise ValidationError("Need at least 2 names to shuffle.")
    if len(cleaned) > MAX_NAMES:
        raise ValidationError(f"At most {MAX_NAMES} names can be shuffled at once.")
    if len({n.casefold() for n in cleaned}) != len(cleaned):
        raise ValidationError("Names must be unique.")

    shuffled = sattolo_shuffle(cleaned, rng)
    return [QuickPair(santa=s, recipient=r) for s, r in zip(cleaned, shuffled)]


def encode_pairs(pairs: Iterable[QuickPair]) -> str:
    raw = json.dumps([asdict(p) for p in pairs], separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_pairs(encoded: str) -> Optional[list[QuickPair]]:
    """None for anything that is not a list of {santa, recipient} string pairs."""
    try:
        padded = encoded + "=" * (-len(encoded) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None

    if not isinstance(data, list):
        return None
    pairs = []
    for item in data:
        if (
            not isinstance(item, dict)
            or not isinstance(item.get("santa"), str)
            or not isinstance(item.get("recipient"), str)
        ):
            return None
        pairs.append(QuickPair(santa=item["santa"], recipient=item["recipient"]))
    return pairs
