import hashlib

import pytest
from fastapi.testclient import TestClient

from zklove.core.config import Settings
from zklove.core.crypto.commitment import CommitmentOpening, CommitmentSalts, ProfileCommitments
from zklove.core.crypto.compatibility import CompatibilityProver
from zklove.core.errors import IncompatibleError
from zklove.schemas.dating import ProfileAttributes
from zklove.main import create_app

API = "/api/v1"


def _attributes(name, city, hobbies, age=27, **extra):
    body = {
        "name": name,
        "bio": f"{name}'s bio",
        "city": city,
        "hobbies": hobbies,
        "age": age,
        "minAge": 18,
        "maxAge": 35,
    }
    body.update(extra)
    return body


@pytest.fixture
def client():
    with TestClient(create_app(Settings())) as client:
        yield client


def _create(client, user_id, city, hobbies, age=27, **extra):
    response = client.post(
        f"{API}/profiles",
        json={
            "userId": user_id,
            "attributes": _attributes(user_id.capitalize(), city, hobbies, age, **extra),
            "identitySecret": f"{user_id}-secret",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def _opening(profile, city, hobbies, age=27):
    attributes = ProfileAttributes.model_validate(
        _attributes(profile["id"].capitalize(), city, hobbies, age)
    )
    return CommitmentOpening(attributes=attributes, salts=CommitmentSalts.from_dict(profile["salts"]))


def _prove(swiper, swiper_args, target, target_args):
    """Proofs are built on the client from the holder's own opening."""
    return CompatibilityProver().prove(
        _opening(swiper, *swiper_args),
        ProfileCommitments.from_dict(swiper["commitments"]),
        _opening(target, *target_args),
        ProfileCommitments.from_dict(target["commitments"]),
        swiper_id=swiper["id"],
        target_id=target["id"],
    ).to_dict()


def _message_hash(text):
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


ALICE = ("SF", ["music", "coding"], 27)
BOB = ("SF", ["coding", "travel"], 29)


def test_health(client):
    response = client.get(f"{API}/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_full_match_flow(client):
    alice = _create(client, "alice", *ALICE)
    bob = _create(client, "bob", *BOB, discloseAgeBracket=True)
    assert alice["auraBalance"] == 100
    assert len(alice["salts"]["hobbies"]) == 15

    proof_ab = _prove(alice, ALICE, bob, BOB)
    signals = proof_ab["publicSignals"]
    assert signals["sharedHobbyCount"] == 1
    assert signals["cityMatch"] is True

    card = client.post(f"{API}/cards", json={"viewerId": "alice", "targetId": "bob", "proof": proof_ab})
    assert card.status_code == 200
    assert card.json()["ageRange"] == "25-30"
    assert card.json()["auraRequiredToUnlock"]["contact"] == 80

    first = client.post(f"{API}/swipes", json={"swiperId": "alice", "targetId": "bob", "isLike": True, "proof": proof_ab})
    assert first.json()["state"] == "one_sided_like"

    proof_ba = _prove(bob, BOB, alice, ALICE)
    second = client.post(f"{API}/swipes", json={"swiperId": "bob", "targetId": "alice", "isLike": True, "proof": proof_ba})
    assert second.json()["isMatch"] is True
    match_id = second.json()["match"]["matchId"]

    matches = client.get(f"{API}/matches", params={"user": "alice"}).json()["matches"]
    assert [m["matchId"] for m in matches] == [match_id]

    unlock = client.post(f"{API}/matches/{match_id}/unlock", json={"requesterId": "alice", "tier": "contact"})
    assert unlock.status_code == 200
    assert unlock.json()["chatUnlocked"] is True
    assert unlock.json()["auraBalance"] == 30

    assert client.get(f"{API}/aura/alice").json()["auraBalance"] == 30
    reasons = [tx["reason"] for tx in client.get(f"{API}/aura/alice/history").json()["transactions"]]
    assert reasons == ["profile_created", "mutual_match", "unlock_chat"]

    stats = client.get(f"{API}/stats").json()
    assert stats["totalMatches"] == 1
    assert stats["unlockedChats"] == 1

    insufficient = client.post(f"{API}/matches/{match_id}/unlock", json={"requesterId": "alice", "tier": "avatar"})
    assert insufficient.status_code == 402
    assert insufficient.json()["reason"] == "INSUFFICIENT_AURA"


def test_error_mapping(client):
    alice = _create(client, "alice", *ALICE)
    carol = _create(client, "carol", "NYC", ["coding"])

    assert client.get(f"{API}/profiles/ghost").status_code == 404

    duplicate = client.post(
        f"{API}/profiles",
        json={"userId": "alice-2", "attributes": _attributes("A", "SF", ["music"]), "identitySecret": "alice-secret"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DuplicateIdentityError"

    too_many = client.post(
        f"{API}/profiles",
        json={
            "userId": "zoe",
            "attributes": _attributes("Zoe", "SF", ["music", "coding", "art", "food", "yoga", "travel"]),
            "identitySecret": "zoe-secret",
        },
    )
    assert too_many.status_code == 400

    with pytest.raises(IncompatibleError):
        _prove(alice, ALICE, carol, ("NYC", ["coding"], 27))

    dave = _create(client, "dave", "SF", ["music", "travel"], 30)
    foreign = _prove(alice, ALICE, dave, ("SF", ["music", "travel"], 30))
    replayed = client.post(f"{API}/cards", json={"viewerId": "alice", "targetId": "carol", "proof": foreign})
    assert replayed.status_code == 422
    assert replayed.json()["reason"] == "INCOMPATIBLE"

    garbage = client.post(f"{API}/swipes", json={"swiperId": "alice", "targetId": "carol", "isLike": True, "proof": {"bogus": 1}})
    assert garbage.status_code == 422

    passed = client.post(f"{API}/swipes", json={"swiperId": "alice", "targetId": "carol", "isLike": False})
    assert passed.json()["state"] == "passed"
    again = client.post(f"{API}/swipes", json={"swiperId": "alice", "targetId": "carol", "isLike": False})
    assert again.status_code == 409

    client.post(f"{API}/profiles/carol/deactivate")
    assert client.get(f"{API}/profiles/carol").json()["isActive"] is False
    candidates = client.get(f"{API}/profiles/alice/candidates").json()["candidates"]
    assert [c["id"] for c in candidates] == ["dave"]


def test_openings_are_never_accepted_over_http(client):
    alice = _create(client, "alice", *ALICE)
    bob = _create(client, "bob", *BOB)
    response = client.post(
        f"{API}/proofs",
        json={"swiperId": alice["id"], "targetId": bob["id"], "selfOpening": {"salts": alice["salts"]}},
    )
    assert response.status_code in (404, 405)
    assert all("/proofs" not in route.path for route in client.app.routes)


def test_match_messages(client):
    alice = _create(client, "alice", *ALICE)
    bob = _create(client, "bob", *BOB)
    client.post(f"{API}/swipes", json={"swiperId": "alice", "targetId": "bob", "isLike": True, "proof": _prove(alice, ALICE, bob, BOB)})
    second = client.post(f"{API}/swipes", json={"swiperId": "bob", "targetId": "alice", "isLike": True, "proof": _prove(bob, BOB, alice, ALICE)})
    match_id = second.json()["match"]["matchId"]

    locked = client.post(
        f"{API}/matches/{match_id}/messages",
        json={"senderId": "alice", "encryptedMessageHash": _message_hash("hi")},
    )
    assert locked.status_code == 403
    assert locked.json()["reason"] == "CHAT_LOCKED"

    client.post(f"{API}/matches/{match_id}/unlock", json={"requesterId": "bob", "tier": "contact"})
    posted = client.post(
        f"{API}/matches/{match_id}/messages",
        json={"senderId": "alice", "encryptedMessageHash": "0x" + _message_hash("hi").upper()},
    )
    assert posted.status_code == 201, posted.text
    assert posted.json()["recipient"] == "bob"
    assert posted.json()["messageHash"] == _message_hash("hi")

    malformed = client.post(
        f"{API}/matches/{match_id}/messages",
        json={"senderId": "bob", "encryptedMessageHash": "not-a-hash"},
    )
    assert malformed.status_code == 400

    listed = client.get(f"{API}/matches/{match_id}/messages").json()
    assert listed["matchId"] == match_id
    assert [m["sender"] for m in listed["messages"]] == ["alice"]
    assert client.get(f"{API}/matches/unknown/messages").status_code == 404
