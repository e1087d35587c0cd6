import asyncio

import pytest

from conftest import make_attributes, onboard, prove
from zklove.core.crypto.commitment import derive_nullifier
from zklove.core.errors import (
    DuplicateIdentityError,
    GatewaySubmissionError,
    IncompatibleError,
    InvalidAttributeError,
    ProfileInactiveError,
    ProfileNotFoundError,
)
from zklove.infrastructure.events import EventKind
from zklove.infrastructure.store import ProfileRecord, ProfileStore
from zklove.schemas.dating import AuraReason, UnlockTier
from zklove.services.match_engine import SwipeAction


# ═══════════════════════════════════════════════════════════════════════════════
# PROFILE LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════════

async def test_create_profile_grants_onboarding_aura(service, gateway):
    events = service.events.subscribe({EventKind.PROFILE_CREATED})
    handle = await onboard(service, "alice", "SF", ["music", "coding"])

    assert handle.aura_balance == 100
    assert handle.nullifier_hash == derive_nullifier("alice-secret")
    assert handle.opening.opens(handle.commitments)
    assert [tx.reason for tx in service.list_aura_history("alice")] == [AuraReason.PROFILE_CREATED]

    record = service.get_profile("alice")
    assert record.is_active
    assert record.commitments == handle.commitments
    assert events.get_nowait().payload["profile"]["id"] == "alice"

    submitted = [e.record_type for e in gateway.chain.entries()]
    assert submitted == ["profile", "aura_transaction"]
    assert "name" not in gateway.chain.entries("profile")[0].payload


async def test_same_identity_cannot_register_twice(service):
    await onboard(service, "alice", "SF", ["music"], secret="shared-human")
    with pytest.raises(DuplicateIdentityError):
        await onboard(service, "alice-2", "SF", ["music"], secret="shared-human")
    assert "alice-2" not in service.store


async def test_concurrent_onboarding_of_one_identity_accepts_one(service, gateway):
    results = await asyncio.gather(
        onboard(service, "u1", "SF", ["music"], secret="same-human"),
        onboard(service, "u2", "SF", ["music"], secret="same-human"),
        return_exceptions=True,
    )
    assert sum(1 for r in results if isinstance(r, DuplicateIdentityError)) == 1
    assert len(service.store) == 1
    assert len(gateway.chain.entries("profile")) == 1
    assert len(gateway.chain.entries("aura_transaction")) == 1


async def test_concurrent_onboarding_of_one_user_id_accepts_one(service, gateway):
    results = await asyncio.gather(
        onboard(service, "alice", "SF", ["music"], secret="first-human"),
        onboard(service, "alice", "SF", ["coding"], secret="second-human"),
        return_exceptions=True,
    )
    assert sum(1 for r in results if isinstance(r, DuplicateIdentityError)) == 1
    handle = next(r for r in results if not isinstance(r, Exception))

    assert service.get_profile("alice").nullifier_hash == handle.nullifier_hash
    assert service.get_aura_balance("alice") == 100
    assert service.ledger.replay_balance("alice") == 100
    assert service.ledger.verify_integrity().is_valid
    assert len(gateway.chain.entries("profile")) == 1

    loser = {derive_nullifier("first-human"), derive_nullifier("second-human")} - {handle.nullifier_hash}
    assert not service.registry.is_registered(loser.pop())


async def test_failed_onboarding_frees_the_user_id_and_identity(service, gateway):
    gateway.fail_on.add("profile")
    with pytest.raises(GatewaySubmissionError):
        await onboard(service, "alice", "SF", ["music"])

    gateway.fail_on.clear()
    handle = await onboard(service, "alice", "SF", ["music"])
    assert handle.aura_balance == 100


def test_store_reservation_blocks_a_second_claim(alice_result):
    store = ProfileStore()
    assert store.reserve("alice")
    assert not store.reserve("alice")
    store.release("alice")
    assert store.reserve("alice")

    store.add(
        ProfileRecord(
            user_id="alice",
            commitments=alice_result.commitments,
            proof=alice_result.proof,
            nullifier_hash=alice_result.commitments.nullifier_hash,
        )
    )
    assert not store.reserve("alice")
    with pytest.raises(DuplicateIdentityError):
        store.add(store.get("alice"))


async def test_deactivated_identity_stays_burned(service):
    await onboard(service, "alice", "SF", ["music"], secret="one-human")
    record = await service.deactivate_profile("alice")
    assert not record.is_active
    assert not service.registry.is_active(record.nullifier_hash)

    with pytest.raises(DuplicateIdentityError):
        await onboard(service, "alice-new", "SF", ["music"], secret="one-human")


async def test_pre_derived_nullifier_is_accepted(service):
    nullifier = derive_nullifier("from-identity-provider")
    handle = await service.create_profile(
        "alice", make_attributes("Alice", "SF", ["music"]), nullifier_hash=nullifier.upper()
    )
    assert handle.nullifier_hash == nullifier


async def test_invalid_profile_input_stores_nothing(service):
    attrs = make_attributes("Alice", "SF", ["music"], age=16)
    with pytest.raises(InvalidAttributeError):
        await service.create_profile("alice", attrs, identity_secret="minor")
    with pytest.raises(InvalidAttributeError):
        await service.create_profile("alice", make_attributes("Alice", "SF", ["music"]))
    assert len(service.store) == 0
    assert not service.registry.is_registered(derive_nullifier("minor"))


async def test_rejected_profile_submission_stores_nothing(service, gateway):
    gateway.fail_on.add("profile")
    with pytest.raises(GatewaySubmissionError):
        await onboard(service, "alice", "SF", ["music"])
    assert len(service.store) == 0
    assert not service.registry.is_registered(derive_nullifier("alice-secret"))


async def test_update_profile_recommits_and_invalidates_old_proofs(service):
    alice = await onboard(service, "alice", "SF", ["music", "coding"])
    bob = await onboard(service, "bob", "SF", ["coding", "travel"], age=29)
    old_proof = await prove(service, alice, bob)

    updated = await service.update_profile(
        "alice", make_attributes("Alice", "SF", ["coding", "travel"]), alice.opening.salts
    )
    assert updated.nullifier_hash == alice.nullifier_hash
    assert updated.commitments.profile_commitment != alice.commitments.profile_commitment
    assert not set(updated.opening.salts.values()) & set(alice.opening.salts.values())
    assert service.get_profile("alice").commitments == updated.commitments
    assert service.get_aura_balance("alice") == 100

    with pytest.raises(IncompatibleError):
        await service.swipe(SwipeAction("alice", "bob", True, old_proof))

    new_proof = await prove(service, updated, bob)
    assert new_proof.public_signals.shared_hobby_count == 2
    outcome = await service.swipe(SwipeAction("alice", "bob", True, new_proof))
    assert not outcome.is_match


async def test_deactivated_profile_cannot_be_updated(service):
    await onboard(service, "alice", "SF", ["music"])
    await service.deactivate_profile("alice")
    with pytest.raises(ProfileInactiveError):
        await service.update_profile("alice", make_attributes("Alice", "LA", ["music"]))


async def test_unknown_profile_is_reported(service):
    with pytest.raises(ProfileNotFoundError):
        service.get_aura_balance("ghost")
    with pytest.raises(ProfileNotFoundError):
        service.list_matches("ghost")


# ═══════════════════════════════════════════════════════════════════════════════
# CARDS, CANDIDATES, STATS
# ═══════════════════════════════════════════════════════════════════════════════

async def test_anonymous_card_from_verified_proof(service):
    alice = await onboard(service, "alice", "SF", ["music", "coding"])
    bob = await onboard(service, "bob", "SF", ["coding", "travel"], age=29, disclose_age_bracket=True)
    card = await service.get_anonymous_card("alice", "bob", await prove(service, alice, bob))

    assert card.id == "bob"
    assert card.city_match is True
    assert card.shared_hobby_count == 1
    assert card.compatibility_score == 30
    assert card.age_range == "25-30"
    assert card.aura_required_to_unlock.model_dump() == {
        "basic": 20, "bio": 40, "avatar": 60, "contact": 80,
    }

    reverse = await service.get_anonymous_card("bob", "alice", await prove(service, bob, alice))
    assert reverse.age_range is None


async def test_anonymous_card_rejects_foreign_proof(service):
    alice = await onboard(service, "alice", "SF", ["music", "coding"])
    bob = await onboard(service, "bob", "SF", ["coding", "travel"], age=29)
    await onboard(service, "dave", "SF", ["coding"], age=30)
    proof = await prove(service, alice, bob)
    with pytest.raises(IncompatibleError):
        await service.get_anonymous_card("alice", "dave", proof)


async def test_candidates_exclude_self_swiped_and_inactive(service):
    alice = await onboard(service, "alice", "SF", ["music"])
    await onboard(service, "bob", "SF", ["music"])
    await onboard(service, "carol", "SF", ["music"])
    await onboard(service, "dave", "SF", ["music"])

    await service.swipe(SwipeAction("alice", "bob", False))
    await service.deactivate_profile("carol")
    assert [r.user_id for r in service.list_candidates(alice.user_id)] == ["dave"]


async def test_stats_and_integrity_after_a_full_session(service, gateway):
    alice = await onboard(service, "alice", "SF", ["music", "coding"])
    bob = await onboard(service, "bob", "SF", ["coding", "travel"], age=29)
    await onboard(service, "carol", "NYC", ["coding"])

    await service.swipe(SwipeAction("alice", "bob", True, await prove(service, alice, bob)))
    match = (await service.swipe(SwipeAction("bob", "alice", True, await prove(service, bob, alice)))).match
    await service.unlock_detail(match.match_id, "alice", UnlockTier.CONTACT)
    await service.deactivate_profile("carol")

    stats = service.get_stats()
    assert stats.total_profiles == 3
    assert stats.active_profiles == 2
    assert stats.total_matches == 1
    assert stats.unlocked_chats == 1
    assert stats.average_compatibility_score == 30.0

    assert service.ledger.verify_integrity().is_valid
    assert gateway.chain.verify_integrity().is_valid
    for user_id in ("alice", "bob", "carol"):
        assert service.get_aura_balance(user_id) == service.ledger.replay_balance(user_id)
