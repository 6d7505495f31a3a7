"""
Sattolo's algorithm for Secret Santa chains.

Plain Fisher-Yates draws j from [0, i] and can leave people holding their own
name or split the group into several small loops. Sattolo draws j from
[0, i - 1] only, so the result is always one cycle through all n people, and
every one of the (n - 1)! possible cycles is equally likely.

Pairing the original order with the shuffled order (ids[i] -> shuffled[i])
turns that cycle into the gift-giving chain.
"""
from __future__ import annotations

import logging
import os
import random
import secrets
from typing import Hashable, Optional, Protocol, Sequence, TypeVar

from ..errors import ValidationError


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


class RandomSource(Protocol):
    secure: bool
    name: str

    def randbelow(self, exclusive_upper: int) -> int:
        ...


class SystemRandomSource:
    """OS entropy via the secrets module."""

    secure = True
    name = "system"

    def randbelow(self, exclusive_upper: int) -> int:
        return secrets.randbelow(exclusive_upper)


class PseudoRandomSource:
    """
    Mersenne Twister source. Predictable: only for tests and for hosts
    without an OS entropy source.
    """

    secure = False
    name = "pseudo"

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def randbelow(self, exclusive_upper: int) -> int:
        return self._rng.randrange(exclusive_upper)


def default_random_source() -> RandomSource:
    try:
        os.urandom(1)
    except NotImplementedError:
        logger.warning("No OS entropy source available; falling back to pseudo-random shuffling")
        return PseudoRandomSource()
    return SystemRandomSource()


def _check_ids(ids: Sequence[T]) -> None:
    if len(ids) < 2:
        raise ValidationError("At least 2 participants are required to shuffle.")
    if len(set(ids)) != len(ids):
        raise ValidationError("Participant ids must be unique.")


def sattolo_shuffle(ids: Sequence[T], rng: RandomSource) -> list[T]:
    """Return a new list holding a uniformly random single-cycle permutation of ids."""
    _check_ids(ids)
    out = list(ids)
    for i in range(len(out) - 1, 0, -1):
        # j < i, never i itself
        j = rng.randbelow(i)
        out[i], out[j] = out[j], out[i]
    return out


def create_chain(ids: Sequence[T], rng: RandomSource) -> dict[T, T]:
    """Map each giver to a recipient so that the whole group forms one chain."""
    shuffled = sattolo_shuffle(ids, rng)
    logger.info(
        "Shuffled %d participants using %s random source%s",
        len(ids),
        rng.name,
        "" if rng.secure else " (NOT cryptographically secure)",
    )
    return dict(zip(ids, shuffled))
