"""
Independent check of a giver -> recipient mapping before it is committed.

This does not trust the permutation engine: it re-derives the invariants
from the mapping alone, so a bug in the generator is caught here instead of
ending up in the database.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Iterable, Mapping, Optional


@dataclass(frozen=True)
class Valid:
    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    reasons: tuple[str, ...]

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)

    def __bool__(self) -> bool:
        return False


def _fmt(ids: Iterable[Hashable]) -> str:
    return ", ".join(sorted(str(i) for i in ids))


def _cycles(mapping: Mapping[Hashable, Hashable]) -> list[list[Hashable]]:
    """Decompose a bijection into its cycles, in key order of first appearance."""
    seen: set = set()
    cycles = []
    for start in mapping:
        if start in seen:
            continue
        cycle = []
        node = start
        while node not in seen:
            seen.add(node)
            cycle.append(node)
            node = mapping[node]
        cycles.append(cycle)
    return cycles


def validate(
    mapping: Mapping[Hashable, Hashable],
    participants: Optional[Iterable[Hashable]] = None,
) -> Valid | Invalid:
    givers = set(mapping.keys())
    recipients = set(mapping.values())

    if participants is not None:
        expected = set(participants)
        if givers != expected:
            parts = []
            if expected - givers:
                parts.append(f"no assignment for: {_fmt(expected - givers)}")
            if givers - expected:
                parts.append(f"unknown givers: {_fmt(givers - expected)}")
            return Invalid(("Assignment does not cover the participant set (" + "; ".join(parts) + ")",))

    if not mapping:
        return Invalid(("Assignment is empty",))

    if givers != recipients or len(mapping) != len(recipients):
        parts = []
        if recipients - givers:
            parts.append(f"recipients who are not givers: {_fmt(recipients - givers)}")
        if givers - recipients:
            parts.append(f"givers nobody gives to: {_fmt(givers - recipients)}")
        return Invalid(("Givers and recipients differ (" + "; ".join(parts) + ")",))

    reasons = []

    fixed = [g for g, r in mapping.items() if g == r]
    if fixed:
        reasons.append(f"Self-assignment detected: {_fmt(fixed)}")

    # single walk from an arbitrary key must visit everyone and close
    start = next(iter(mapping))
    visited = {start}
    node = mapping[start]
    while node != start and node not in visited:
        visited.add(node)
        node = mapping[node]

    if len(visited) != len(mapping):
        described = " | ".join(" -> ".join(str(n) for n in c + c[:1]) for c in _cycles(mapping))
        reasons.append(
            f"Multiple cycles detected: only {len(visited)} of {len(mapping)} "
            f"participants in main cycle ({described})"
        )

    if reasons:
        return Invalid(tuple(reasons))
    return Valid()
