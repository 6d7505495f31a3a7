from __future__ import annotations

from shuffler.services.validation import Invalid, Valid, validate


def test_single_four_cycle_is_valid():
    result = validate({"A": "B", "B": "C", "C": "D", "D": "A"})
    assert isinstance(result, Valid)
    assert result


def test_fixed_point_and_two_cycle_both_reported():
    result = validate({"A": "B", "B": "A", "C": "C"})
    assert isinstance(result, Invalid)
    assert not result
    assert "Self-assignment detected: C" in result.reason
    assert "A -> B -> A" in result.reason
    assert "C -> C" in result.reason


def test_three_cycle_plus_fixed_point_does_not_cover_everyone():
    result = validate({"A": "B", "B": "C", "C": "A", "D": "D"}, participants={"A", "B", "C", "D"})
    assert isinstance(result, Invalid)
    assert "Self-assignment detected: D" in result.reason
    assert "only 3 of 4" in result.reason


def test_two_disjoint_pairs():
    result = validate({1: 2, 2: 1, 3: 4, 4: 3})
    assert isinstance(result, Invalid)
    assert len(result.reasons) == 1
    assert "Multiple cycles" in result.reason


def test_recipient_outside_giver_set():
    result = validate({"A": "B", "B": "Z"})
    assert isinstance(result, Invalid)
    assert "Givers and recipients differ" in result.reason
    assert "Z" in result.reason


def test_recipient_assigned_twice():
    result = validate({"A": "B", "B": "A", "C": "A"})
    assert isinstance(result, Invalid)
    assert "givers nobody gives to: C" in result.reason


def test_participant_set_mismatch():
    result = validate({"A": "B", "B": "A"}, participants=["A", "B", "C"])
    assert isinstance(result, Invalid)
    assert "no assignment for: C" in result.reason


def test_empty_mapping():
    assert isinstance(validate({}), Invalid)


def test_two_person_swap_is_valid():
    assert isinstance(validate({7: 8, 8: 7}, participants=[7, 8]), Valid)
