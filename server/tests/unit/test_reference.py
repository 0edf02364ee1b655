"""Unit tests for booking reference generation."""

import itertools

import pytest

from peaks_booking.core.exceptions import ReferenceGenerationError
from peaks_booking.services.reference import (
    REFERENCE_ALPHABET,
    REFERENCE_LENGTH,
    ReferenceGenerator,
    generate_reference,
)


def test_reference_shape():
    reference = generate_reference()

    assert reference.startswith("PP-")
    body = reference[len("PP-"):]
    assert len(body) == REFERENCE_LENGTH
    assert set(body) <= set(REFERENCE_ALPHABET)


def test_alphabet_has_no_ambiguous_characters():
    assert len(REFERENCE_ALPHABET) == 32
    for ambiguous in "0O1I":
        assert ambiguous not in REFERENCE_ALPHABET


def test_injected_random_source():
    assert generate_reference(prefix="PP-", choice=lambda alphabet: "Z") == "PP-ZZZZZZ"


@pytest.mark.asyncio
async def test_regenerates_on_collision():
    # First candidate is all A's (taken), second is all B's
    symbols = itertools.chain(["A"] * REFERENCE_LENGTH, itertools.repeat("B"))
    taken = {"PP-AAAAAA"}
    checked = []

    async def exists(candidate):
        checked.append(candidate)
        return candidate in taken

    generator = ReferenceGenerator(exists, prefix="PP-", choice=lambda alphabet: next(symbols))

    assert await generator.next_reference() == "PP-BBBBBB"
    assert checked == ["PP-AAAAAA", "PP-BBBBBB"]


@pytest.mark.asyncio
async def test_gives_up_when_every_candidate_collides():
    calls = 0

    async def exists(candidate):
        nonlocal calls
        calls += 1
        return True

    generator = ReferenceGenerator(exists, max_attempts=5, choice=lambda alphabet: "Q")

    with pytest.raises(ReferenceGenerationError) as exc_info:
        await generator.next_reference()

    assert calls == 5
    assert exc_info.value.status_code == 500


def test_attempt_budget_must_allow_one_attempt():
    async def exists(candidate):
        return False

    with pytest.raises(ValueError):
        ReferenceGenerator(exists, max_attempts=0)
