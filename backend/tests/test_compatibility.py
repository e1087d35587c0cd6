import dataclasses
import json
import threading

import pytest

from zklove.core.crypto.compatibility import (
    CompatibilityProof,
    PublicSignals,
    ScoringPolicy,
    ages_overlap,
)
from zklove.core.errors import (
    IncompatibleError,
    InvalidAttributeError,
    ProofCancelledError,
    ProofTimeoutError,
)


def _with_signals(proof: CompatibilityProof, **changes) -> CompatibilityProof:
    return dataclasses.replace(proof, public_signals=dataclasses.replace(proof.public_signals, **changes))


# ═══════════════════════════════════════════════════════════════════════════════
# SCORING POLICY
# ═══════════════════════════════════════════════════════════════════════════════

def test_score_formula():
    policy = ScoringPolicy()
    assert policy.score(1, False) == 20
    assert policy.score(1, True) == 30
    assert policy.score(5, True) == 100
    assert policy.allowed_scores(2) == (40, 50)


def test_compatibility_threshold():
    policy = ScoringPolicy()
    assert policy.is_compatible(True, 1)
    assert not policy.is_compatible(True, 0)
    assert not policy.is_compatible(False, 3)


def test_age_overlap_is_mutual(alice_result, bob_result):
    assert ages_overlap(alice_result.opening, bob_result.opening)


# ═══════════════════════════════════════════════════════════════════════════════
# PROVE / VERIFY
# ═══════════════════════════════════════════════════════════════════════════════

def test_shared_city_and_hobby_scenario(alice_bob_proof, verifier, alice_result, bob_result):
    signals = alice_bob_proof.public_signals
    assert signals.shared_hobby_count == 1
    assert signals.city_match is True
    assert signals.is_compatible is True
    assert 0 < signals.compatibility_score <= 100
    assert signals.compatibility_score == 30
    assert verifier.verify(
        alice_bob_proof, alice_result.commitments, bob_result.commitments, "alice", "bob"
    )


def test_public_signals_reveal_no_attributes(alice_bob_proof):
    encoded = json.dumps(alice_bob_proof.to_dict()).lower()
    for secret in ("coding", "music", "travel", "alice's bio", '"sf"'):
        assert secret not in encoded


def test_different_city_raises_incompatible(prover, alice_result, carol_result):
    with pytest.raises(IncompatibleError) as exc_info:
        prover.prove(
            alice_result.opening, alice_result.commitments,
            carol_result.opening, carol_result.commitments,
            swiper_id="alice", target_id="carol",
        )
    assert exc_info.value.details == {"city_match": False}


def test_no_shared_hobby_raises_incompatible(prover, alice_result, dave_result):
    with pytest.raises(IncompatibleError):
        prover.prove(
            alice_result.opening, alice_result.commitments,
            dave_result.opening, dave_result.commitments,
            swiper_id="alice", target_id="dave",
        )


def test_opening_must_match_commitments(prover, alice_result, bob_result, dave_result):
    with pytest.raises(InvalidAttributeError):
        prover.prove(
            alice_result.opening, alice_result.commitments,
            bob_result.opening, dave_result.commitments,
            swiper_id="alice", target_id="dave",
        )


def test_replay_against_other_counterpart_is_rejected(alice_bob_proof, verifier, alice_result, dave_result):
    assert not verifier.verify(alice_bob_proof, alice_result.commitments, dave_result.commitments)


def test_wrong_context_is_rejected(alice_bob_proof, verifier, alice_result, bob_result):
    assert not verifier.verify(
        alice_bob_proof, alice_result.commitments, bob_result.commitments, "mallory", "bob"
    )
    relabelled = dataclasses.replace(alice_bob_proof, swiper_id="mallory")
    assert not verifier.verify(relabelled, alice_result.commitments, bob_result.commitments)


@pytest.mark.parametrize(
    "changes",
    [
        {"compatibility_score": 100},
        {"compatibility_score": 150},
        {"compatibility_score": -5},
        {"shared_hobby_count": 2, "compatibility_score": 50},
        {"shared_hobby_count": 0, "compatibility_score": 0},
        {"is_compatible": False},
    ],
    ids=["inflated-score", "score-above-range", "negative-score", "inflated-count",
         "zero-count", "not-compatible"],
)
def test_tampered_public_signals_are_rejected(changes, alice_bob_proof, verifier, alice_result, bob_result):
    forged = _with_signals(alice_bob_proof, **changes)
    assert not verifier.verify(forged, alice_result.commitments, bob_result.commitments)


def test_malformed_proofs_yield_false(alice_bob_proof, verifier, alice_result, bob_result):
    no_products = dataclasses.replace(alice_bob_proof, product_commitments=())
    assert verifier.verify(no_products, alice_result.commitments, bob_result.commitments) is False
    assert verifier.verify("garbage", alice_result.commitments, bob_result.commitments) is False
    wrong_version = dataclasses.replace(alice_bob_proof, proof_version=99)
    assert verifier.verify(wrong_version, alice_result.commitments, bob_result.commitments) is False


def test_serialized_proof_verifies(alice_bob_proof, verifier, alice_result, bob_result):
    decoded = CompatibilityProof.from_dict(json.loads(json.dumps(alice_bob_proof.to_dict())))
    assert verifier.verify(decoded, alice_result.commitments, bob_result.commitments, "alice", "bob")


def test_public_signals_decoding_is_strict(alice_bob_proof):
    data = alice_bob_proof.public_signals.to_dict()
    data["isCompatible"] = "true"
    with pytest.raises(ValueError):
        PublicSignals.from_dict(data)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMEOUT & CANCELLATION
# ═══════════════════════════════════════════════════════════════════════════════

def test_cancel_token_stops_generation(prover, alice_result, bob_result):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ProofCancelledError):
        prover.prove(
            alice_result.opening, alice_result.commitments,
            bob_result.opening, bob_result.commitments,
            swiper_id="alice", target_id="bob", cancel_event=cancel,
        )


def test_exhausted_budget_raises_timeout(prover, alice_result, bob_result):
    with pytest.raises(ProofTimeoutError):
        prover.prove(
            alice_result.opening, alice_result.commitments,
            bob_result.opening, bob_result.commitments,
            swiper_id="alice", target_id="bob", timeout=0.0,
        )


async def test_prove_async_times_out(prover, alice_result, bob_result):
    with pytest.raises(ProofTimeoutError):
        await prover.prove_async(
            alice_result.opening, alice_result.commitments,
            bob_result.opening, bob_result.commitments,
            swiper_id="alice", target_id="bob", timeout=0.001,
        )


async def test_prove_async_returns_verifiable_proof(prover, verifier, alice_result, bob_result):
    proof = await prover.prove_async(
        bob_result.opening, bob_result.commitments,
        alice_result.opening, alice_result.commitments,
        swiper_id="bob", target_id="alice",
    )
    assert proof.public_signals.shared_hobby_count == 1
    assert verifier.verify(proof, bob_result.commitments, alice_result.commitments, "bob", "alice")
