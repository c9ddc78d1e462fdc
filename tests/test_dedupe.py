"""Tests for duplicate matching."""

from __future__ import annotations

import pytest

from conftest import FakeClock, make_card
from dedupe import (
    COMPANY_COMPARATOR,
    EMAIL_COMPARATOR,
    PHONE_COMPARATOR,
    DuplicateMatcher,
    digits_equal,
)
from repository import CardRepository


def test_email_match_is_case_insensitive_and_tied(repository: CardRepository) -> None:
    a = repository.create(make_card(email="x@y.com"))
    b = repository.create(make_card(email="X@Y.com"))
    repository.create(make_card(email="other@y.com"))

    found = repository.find_duplicates("x@y.com")

    assert {d.card.id for d in found} == {a.id, b.id}
    assert all(d.matched_fields == ["email"] for d in found)
    assert all(d.similarity == pytest.approx(0.8) for d in found)


def test_ties_are_ordered_newest_first(repository: CardRepository) -> None:
    a = repository.create(make_card(email="x@y.com"))
    b = repository.create(make_card(email="X@Y.com"))

    assert [d.card.id for d in repository.find_duplicates("x@y.com")] == [b.id, a.id]


def test_exclude_id_skips_the_card_being_edited(repository: CardRepository) -> None:
    a = repository.create(make_card(email="x@y.com"))
    b = repository.create(make_card(email="x@y.com"))

    found = repository.find_duplicates("x@y.com", exclude_id=a.id)

    assert [d.card.id for d in found] == [b.id]


def test_no_match_and_empty_email(repository: CardRepository) -> None:
    repository.create(make_card(email="x@y.com"))
    repository.create(make_card(email=""))

    assert repository.find_duplicates("z@y.com") == []
    assert repository.find_duplicates("") == []


def test_additional_comparators_add_weight(clock: FakeClock) -> None:
    matcher = DuplicateMatcher([EMAIL_COMPARATOR, PHONE_COMPARATOR, COMPANY_COMPARATOR])
    repository = CardRepository(matcher=matcher, clock=clock)
    same_phone = repository.create(make_card(email="x@y.com", phone="03-1111-2222"))
    email_only = repository.create(make_card(email="x@y.com", phone="06-0000-0000"))

    probe = {"email": "X@y.com", "phone": "0311112222"}
    found = matcher.match(probe, repository.all())

    assert [d.card.id for d in found] == [same_phone.id, email_only.id]
    assert found[0].matched_fields == ["email", "phone"]
    assert found[0].similarity == pytest.approx(0.9)
    assert found[1].matched_fields == ["email"]


def test_comparator_ignores_fields_missing_from_probe(repository: CardRepository) -> None:
    matcher = DuplicateMatcher([EMAIL_COMPARATOR, COMPANY_COMPARATOR])
    card = repository.create(make_card(email="x@y.com"))

    found = matcher.match({"email": "x@y.com"}, [card])

    assert found[0].matched_fields == ["email"]


def test_matcher_needs_a_comparator() -> None:
    with pytest.raises(ValueError):
        DuplicateMatcher([])


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [("03-1234-5678", "0312345678", True), ("03 1234 5678", "03-1234-5679", False), ("", "", False)],
)
def test_digits_equal(a: str, b: str, expected: bool) -> None:
    assert digits_equal(a, b) is expected
