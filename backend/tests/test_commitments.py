import dataclasses
import json

import pytest

from conftest import make_attributes
from zklove.core.crypto.commitment import (
    CommitmentSalts,
    ProfileCommitments,
    WellFormednessProof,
    derive_nullifier,
    fresh_salts,
    is_nullifier,
)
from zklove.core.crypto.group import GROUP_G, GROUP_H, multi_exp, random_scalar
from zklove.core.errors import InvalidAttributeError

NULLIFIER = derive_nullifier("test-secret")


# ═══════════════════════════════════════════════════════════════════════════════
# NULLIFIER
# ═══════════════════════════════════════════════════════════════════════════════

def test_nullifier_is_deterministic_hex():
    assert derive_nullifier("test-secret") == NULLIFIER
    assert is_nullifier(NULLIFIER)
    assert derive_nullifier("other-secret") != NULLIFIER


def test_nullifier_rejects_empty_secret():
    with pytest.raises(InvalidAttributeError):
        derive_nullifier("")


# ═══════════════════════════════════════════════════════════════════════════════
# COMMIT + WELL-FORMEDNESS
# ═══════════════════════════════════════════════════════════════════════════════

def test_commit_produces_verifiable_well_formedness_proof(generator, alice_result):
    assert generator.verify_well_formed(alice_result.commitments, alice_result.proof)
    assert alice_result.opening.opens(alice_result.commitments)
    assert len(alice_result.commitments.hobby_slots) == 15


def test_commitments_hide_identical_attributes(generator, alice_result):
    again = generator.commit(
        alice_result.opening.attributes, CommitmentSalts.generate(), alice_result.commitments.nullifier_hash
    )
    assert again.commitments.profile_commitment != alice_result.commitments.profile_commitment
    assert again.commitments.location_commitment != alice_result.commitments.location_commitment
    assert again.commitments.hobbies_commitment != alice_result.commitments.hobbies_commitment


def test_opening_does_not_match_other_attributes(alice_result):
    other = make_attributes("Mallory", "SF", ["music", "coding"])
    forged = dataclasses.replace(alice_result.opening, attributes=other)
    assert not forged.opens(alice_result.commitments)


def test_proof_is_bound_to_nullifier(generator, alice_result):
    rebound = dataclasses.replace(alice_result.commitments, nullifier_hash=derive_nullifier("someone-else"))
    assert not generator.verify_well_formed(rebound, alice_result.proof)


def test_non_bit_hobby_slot_is_rejected(generator, alice_result):
    slots = list(alice_result.commitments.hobby_slots)
    slots[0] = multi_exp(((GROUP_G, 2), (GROUP_H, random_scalar())))
    forged = dataclasses.replace(alice_result.commitments, hobby_slots=tuple(slots))
    assert not generator.verify_well_formed(forged, alice_result.proof)


def test_malformed_proof_yields_false(generator, alice_result):
    truncated = dataclasses.replace(alice_result.proof, slot_bits=alice_result.proof.slot_bits[:3])
    assert generator.verify_well_formed(alice_result.commitments, truncated) is False
    assert generator.verify_well_formed(alice_result.commitments, "not a proof") is False


def test_serialized_commitments_and_proof_still_verify(generator, alice_result):
    commitments = ProfileCommitments.from_dict(json.loads(json.dumps(alice_result.commitments.to_dict())))
    proof = WellFormednessProof.from_dict(json.loads(json.dumps(alice_result.proof.to_dict())))
    assert commitments == alice_result.commitments
    assert generator.verify_well_formed(commitments, proof)


def test_hobbies_commitment_must_match_slots(alice_result):
    data = alice_result.commitments.to_dict()
    data["hobbiesCommitment"] = "00" * 32
    with pytest.raises(ValueError):
        ProfileCommitments.from_dict(data)


def test_salts_serialize_as_hex(alice_result):
    salts = alice_result.opening.salts
    assert CommitmentSalts.from_dict(salts.to_dict()) == salts


# ═══════════════════════════════════════════════════════════════════════════════
# ATTRIBUTE VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize(
    "attributes",
    [
        make_attributes("A", "SF", ["music", "coding", "art", "food", "yoga", "travel"]),
        make_attributes("A", "SF", ["music"], age=17),
        make_attributes("A", "SF", ["music"], age=101),
        make_attributes("A", "SF", ["knitting"]),
        make_attributes("A", "SF", ["music", "music"]),
        make_attributes("A", "SF", ["music"], min_age=40, max_age=30),
        make_attributes("A", "   ", ["music"]),
    ],
    ids=["too-many-hobbies", "underage", "over-max-age", "unknown-hobby",
         "repeated-hobby", "inverted-age-range", "blank-city"],
)
def test_invalid_attributes_are_rejected(generator, attributes):
    with pytest.raises(InvalidAttributeError):
        generator.commit(attributes, CommitmentSalts.generate(), NULLIFIER)


def test_single_age_preference_commits(generator):
    attrs = make_attributes("A", "SF", ["music"], age=30, min_age=30, max_age=30)
    result = generator.commit(attrs, CommitmentSalts.generate(), NULLIFIER)
    assert generator.verify_well_formed(result.commitments, result.proof)
    assert result.opening.opens(result.commitments)


def test_salt_reuse_across_fields_is_rejected(generator):
    salts = CommitmentSalts.generate()
    reused = dataclasses.replace(salts, age=salts.profile)
    with pytest.raises(InvalidAttributeError, match="reused"):
        generator.commit(make_attributes("A", "SF", ["music"]), reused, NULLIFIER)


def test_malformed_nullifier_is_rejected(generator):
    with pytest.raises(InvalidAttributeError):
        generator.commit(make_attributes("A", "SF", ["music"]), CommitmentSalts.generate(), "not-hex")


def test_fresh_salts_share_nothing_with_previous():
    previous = CommitmentSalts.generate()
    salts = fresh_salts(previous)
    assert not set(previous.values()) & set(salts.values())
