"""
Commitment Generator — binding, hiding profile commitments.

Turns a profile's private attributes into Pedersen commitments that can be
published, plus a proof that the commitments are well formed.

═══════════════════════════════════════════════════════════════════════════════
COMMITMENTS
═══════════════════════════════════════════════════════════════════════════════

  profileCommitment  = G^{H(name, bio, avatarRef, age)} · H^{s1}
  locationCommitment = G^{H(city)} · G_GEO^{H(lat, lng)} · H^{s2}
  hobby slot i       = G^{b_i} · H^{s3_i}     b_i = 1 iff catalog[i] ∈ hobbies
  hobbiesCommitment  = BLAKE2b(slot_0 ‖ … ‖ slot_14)
  ageCommitment      = G^{H(age, minAge, maxAge)} · H^{s4}

  The city gets its own exponent so that two location commitments can be
  compared for city equality without touching the coordinates.

═══════════════════════════════════════════════════════════════════════════════
WELL-FORMEDNESS PROOF
═══════════════════════════════════════════════════════════════════════════════

  1. Knowledge of an opening for profile, location and age commitments
  2. Every hobby slot commits to a bit          (1-of-2 OR proof)
  3. ∏ slots commits to a count in [0, MAX]     (1-of-(MAX+1) OR proof)

  All bound to the profile's nullifier, so a proof cannot be re-attached
  to another identity.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from zklove.core.crypto.group import (
    GROUP_G,
    GROUP_G_GEO,
    GROUP_H,
    GROUP_Q,
    Transcript,
    element_from_hex,
    element_to_bytes,
    element_to_hex,
    hash_to_scalar,
    is_subgroup_element,
    multi_exp,
    product,
    random_scalar,
    scalar_from_hex,
    scalar_to_hex,
)
from zklove.core.crypto.sigma import (
    LinearProof,
    MembershipProof,
    Statement,
    prove_linear,
    prove_membership,
    verify_linear,
    verify_membership,
)
from zklove.core.errors import InvalidAttributeError
from zklove.schemas.dating import HOBBY_CATALOG, ProfileAttributes

logger = logging.getLogger(__name__)

NULLIFIER_DOMAIN = b"zklove-nullifier-v1"
_NULLIFIER_RE = re.compile(r"^[0-9a-f]{64}$")
COORDINATE_SCALE = 1_000_000


# ═══════════════════════════════════════════════════════════════════════════════
# NULLIFIER
# ═══════════════════════════════════════════════════════════════════════════════

def derive_nullifier(identity_secret: Union[str, bytes]) -> str:
    """
    nullifierHash = BLAKE2b-256(domain ‖ stableIdentitySecret).

    Deterministic per verified human and not reversible to the secret.
    """
    if isinstance(identity_secret, str):
        identity_secret = identity_secret.encode("utf-8")
    if not identity_secret:
        raise InvalidAttributeError("identity secret must not be empty")
    h = hashlib.blake2b(digest_size=32, person=b"zklove-null")
    h.update(NULLIFIER_DOMAIN)
    h.update(identity_secret)
    return h.hexdigest()


def is_nullifier(value: str) -> bool:
    return bool(_NULLIFIER_RE.match(value or ""))


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CommitmentSalts:
    """Blinding scalars, one per commitment field and one per hobby slot."""
    profile: int
    location: int
    hobbies: Tuple[int, ...]
    age: int

    @classmethod
    def generate(cls) -> "CommitmentSalts":
        return cls(
            profile=random_scalar(),
            location=random_scalar(),
            hobbies=tuple(random_scalar() for _ in HOBBY_CATALOG),
            age=random_scalar(),
        )

    def values(self) -> List[int]:
        return [self.profile, self.location, *self.hobbies, self.age]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": scalar_to_hex(self.profile),
            "location": scalar_to_hex(self.location),
            "hobbies": [scalar_to_hex(s) for s in self.hobbies],
            "age": scalar_to_hex(self.age),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CommitmentSalts":
        return cls(
            profile=scalar_from_hex(data["profile"]),
            location=scalar_from_hex(data["location"]),
            hobbies=tuple(scalar_from_hex(s) for s in data["hobbies"]),
            age=scalar_from_hex(data["age"]),
        )


@dataclass(frozen=True)
class ProfileCommitments:
    """Public commitments of one profile. Safe to publish."""
    profile_commitment: int
    location_commitment: int
    hobby_slots: Tuple[int, ...]
    age_commitment: int
    nullifier_hash: str

    @property
    def hobbies_commitment(self) -> str:
        return hobbies_digest(self.hobby_slots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profileCommitment": element_to_hex(self.profile_commitment),
            "locationCommitment": element_to_hex(self.location_commitment),
            "hobbiesCommitment": self.hobbies_commitment,
            "hobbySlots": [element_to_hex(s) for s in self.hobby_slots],
            "ageCommitment": element_to_hex(self.age_commitment),
            "nullifierHash": self.nullifier_hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProfileCommitments":
        slots = tuple(element_from_hex(s) for s in data["hobbySlots"])
        commitments = cls(
            profile_commitment=element_from_hex(data["profileCommitment"]),
            location_commitment=element_from_hex(data["locationCommitment"]),
            hobby_slots=slots,
            age_commitment=element_from_hex(data["ageCommitment"]),
            nullifier_hash=str(data["nullifierHash"]),
        )
        claimed = data.get("hobbiesCommitment")
        if claimed is not None and claimed != commitments.hobbies_commitment:
            raise ValueError("hobbiesCommitment does not match hobby slots")
        return commitments


def hobbies_digest(slots: Tuple[int, ...]) -> str:
    h = hashlib.blake2b(digest_size=32, person=b"zklove-hobbies")
    for slot in slots:
        h.update(element_to_bytes(slot))
    return h.hexdigest()


@dataclass(frozen=True)
class CommitmentOpening:
    """
    Attributes plus salts: everything needed to open a profile's commitments.

    Owned exclusively by the profile holder.
    """
    attributes: ProfileAttributes
    salts: CommitmentSalts

    def profile_scalar(self) -> int:
        a = self.attributes
        return hash_to_scalar("profile", a.name, a.bio, a.avatar_ref or "", a.age)

    def city_scalar(self) -> int:
        return hash_to_scalar("city", self.attributes.normalized_city())

    def geo_scalar(self) -> int:
        coords = self.attributes.coordinates
        if coords is None:
            return hash_to_scalar("geo", "none")
        return hash_to_scalar(
            "geo",
            int(round(coords.lat * COORDINATE_SCALE)),
            int(round(coords.lng * COORDINATE_SCALE)),
        )

    def age_scalar(self) -> int:
        a = self.attributes
        return hash_to_scalar("age", a.age, a.min_age, a.max_age)

    def hobby_bits(self) -> Tuple[int, ...]:
        chosen = set(self.attributes.hobbies)
        return tuple(1 if hobby in chosen else 0 for hobby in HOBBY_CATALOG)

    def hobby_count_blinding(self) -> int:
        return sum(self.salts.hobbies) % GROUP_Q

    def opens(self, commitments: ProfileCommitments) -> bool:
        """True when these attributes and salts reproduce the commitments."""
        return _compute_commitments(self, commitments.nullifier_hash) == commitments


@dataclass(frozen=True)
class WellFormednessProof:
    openings: LinearProof
    slot_bits: Tuple[MembershipProof, ...]
    hobby_count: MembershipProof

    def to_dict(self) -> Dict[str, Any]:
        return {
            "openings": self.openings.to_dict(),
            "slotBits": [p.to_dict() for p in self.slot_bits],
            "hobbyCount": self.hobby_count.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WellFormednessProof":
        return cls(
            openings=LinearProof.from_dict(data["openings"]),
            slot_bits=tuple(MembershipProof.from_dict(p) for p in data["slotBits"]),
            hobby_count=MembershipProof.from_dict(data["hobbyCount"]),
        )


@dataclass(frozen=True)
class CommitmentResult:
    commitments: ProfileCommitments
    proof: WellFormednessProof
    opening: CommitmentOpening


# ═══════════════════════════════════════════════════════════════════════════════
# COMMITMENT COMPUTATION
# ═══════════════════════════════════════════════════════════════════════════════

def _pedersen(message: int, blinding: int) -> int:
    return multi_exp(((GROUP_G, message), (GROUP_H, blinding)))


def _compute_commitments(opening: CommitmentOpening, nullifier_hash: str) -> ProfileCommitments:
    salts = opening.salts
    location = multi_exp((
        (GROUP_G, opening.city_scalar()),
        (GROUP_G_GEO, opening.geo_scalar()),
        (GROUP_H, salts.location),
    ))
    slots = tuple(
        _pedersen(bit, salt) for bit, salt in zip(opening.hobby_bits(), salts.hobbies)
    )
    return ProfileCommitments(
        profile_commitment=_pedersen(opening.profile_scalar(), salts.profile),
        location_commitment=location,
        hobby_slots=slots,
        age_commitment=_pedersen(opening.age_scalar(), salts.age),
        nullifier_hash=nullifier_hash,
    )


def _opening_statements(commitments: ProfileCommitments) -> List[Statement]:
    return [
        Statement(commitments.profile_commitment, ((GROUP_G, "m_profile"), (GROUP_H, "r_profile"))),
        Statement(
            commitments.location_commitment,
            ((GROUP_G, "m_city"), (GROUP_G_GEO, "m_geo"), (GROUP_H, "r_location")),
        ),
        Statement(commitments.age_commitment, ((GROUP_G, "m_age"), (GROUP_H, "r_age"))),
    ]


def _seed_transcript(commitments: ProfileCommitments) -> Transcript:
    transcript = Transcript("zklove-wellformed-v1")
    transcript.append("nullifier", commitments.nullifier_hash)
    transcript.append_elements("profile", [commitments.profile_commitment])
    transcript.append_elements("location", [commitments.location_commitment])
    transcript.append_elements("age", [commitments.age_commitment])
    transcript.append_elements("hobby_slots", commitments.hobby_slots)
    return transcript


# ═══════════════════════════════════════════════════════════════════════════════
# GENERATOR
# ═══════════════════════════════════════════════════════════════════════════════

class CommitmentGenerator:
    """
    Produces profile commitments and their well-formedness proofs.

    Pure: nothing is stored, the caller persists the result.

    Usage:
        generator = CommitmentGenerator()
        result = generator.commit(attributes, CommitmentSalts.generate(), nullifier)
        assert generator.verify_well_formed(result.commitments, result.proof)
    """

    def __init__(self, max_hobbies: int = 5, min_age: int = 18, max_age: int = 100) -> None:
        self.max_hobbies = max_hobbies
        self.min_age = min_age
        self.max_age = max_age

    @classmethod
    def from_settings(cls, settings) -> "CommitmentGenerator":
        return cls(
            max_hobbies=settings.MAX_HOBBIES,
            min_age=settings.MIN_AGE,
            max_age=settings.MAX_AGE,
        )

    def validate(self, attributes: ProfileAttributes) -> None:
        """Raise InvalidAttributeError on any attribute outside the allowed domain."""
        if not attributes.name.strip():
            raise InvalidAttributeError("name must not be blank")
        if not attributes.city.strip():
            raise InvalidAttributeError("city must not be blank")

        if len(attributes.hobbies) > self.max_hobbies:
            raise InvalidAttributeError(
                f"at most {self.max_hobbies} hobbies allowed, got {len(attributes.hobbies)}"
            )
        unknown = [h for h in attributes.hobbies if h not in HOBBY_CATALOG]
        if unknown:
            raise InvalidAttributeError(f"unknown hobbies: {', '.join(unknown)}")
        if len(set(attributes.hobbies)) != len(attributes.hobbies):
            raise InvalidAttributeError("hobbies must not repeat")

        if not self.min_age <= attributes.age <= self.max_age:
            raise InvalidAttributeError(
                f"age must be within [{self.min_age}, {self.max_age}]"
            )
        if not (self.min_age <= attributes.min_age <= attributes.max_age <= self.max_age):
            raise InvalidAttributeError("preferred age range is invalid")

        coords = attributes.coordinates
        if coords is not None and not (-90.0 <= coords.lat <= 90.0 and -180.0 <= coords.lng <= 180.0):
            raise InvalidAttributeError("coordinates out of range")

    def commit(
        self,
        attributes: ProfileAttributes,
        salts: CommitmentSalts,
        nullifier_hash: str,
    ) -> CommitmentResult:
        """
        Commit to a profile's attributes with the given fresh salts.

        Raises:
            InvalidAttributeError: on bad attributes, a malformed nullifier,
                or salts reused across fields.
        """
        self.validate(attributes)
        if not is_nullifier(nullifier_hash):
            raise InvalidAttributeError("nullifier hash must be 64 lowercase hex characters")

        values = salts.values()
        if len(salts.hobbies) != len(HOBBY_CATALOG):
            raise InvalidAttributeError("one salt per hobby slot is required")
        if any(not 0 < s < GROUP_Q for s in values):
            raise InvalidAttributeError("salts must be non-zero scalars of Z_q")
        if len(set(values)) != len(values):
            raise InvalidAttributeError("salt reused across commitment fields")

        opening = CommitmentOpening(attributes=attributes, salts=salts)
        commitments = _compute_commitments(opening, nullifier_hash)
        proof = self._prove_well_formed(commitments, opening)

        logger.info(
            f"[COMMIT] Profile committed — nullifier={nullifier_hash[:12]}... "
            f"hobbies_commitment={commitments.hobbies_commitment[:16]}..."
        )
        return CommitmentResult(commitments=commitments, proof=proof, opening=opening)

    def _prove_well_formed(
        self,
        commitments: ProfileCommitments,
        opening: CommitmentOpening,
    ) -> WellFormednessProof:
        transcript = _seed_transcript(commitments)
        salts = opening.salts

        openings = prove_linear(
            _opening_statements(commitments),
            {
                "m_profile": opening.profile_scalar(),
                "r_profile": salts.profile,
                "m_city": opening.city_scalar(),
                "m_geo": opening.geo_scalar(),
                "r_location": salts.location,
                "m_age": opening.age_scalar(),
                "r_age": salts.age,
            },
            transcript,
        )

        bits = opening.hobby_bits()
        slot_bits = tuple(
            prove_membership(slot, bit, salt, (0, 1), transcript)
            for slot, bit, salt in zip(commitments.hobby_slots, bits, salts.hobbies)
        )

        hobby_count = prove_membership(
            product(commitments.hobby_slots),
            sum(bits),
            opening.hobby_count_blinding(),
            tuple(range(self.max_hobbies + 1)),
            transcript,
        )
        return WellFormednessProof(openings=openings, slot_bits=slot_bits, hobby_count=hobby_count)

    def verify_well_formed(
        self,
        commitments: ProfileCommitments,
        proof: WellFormednessProof,
    ) -> bool:
        """Verify a well-formedness proof. Never raises."""
        try:
            return self._verify_well_formed(commitments, proof)
        except Exception as exc:
            logger.warning(f"[COMMIT] Malformed well-formedness proof rejected: {exc}")
            return False

    def _verify_well_formed(
        self,
        commitments: ProfileCommitments,
        proof: WellFormednessProof,
    ) -> bool:
        if not is_nullifier(commitments.nullifier_hash):
            return False
        if len(commitments.hobby_slots) != len(HOBBY_CATALOG):
            return False
        if len(proof.slot_bits) != len(HOBBY_CATALOG):
            return False

        elements = [
            commitments.profile_commitment,
            commitments.location_commitment,
            commitments.age_commitment,
            *commitments.hobby_slots,
        ]
        if not all(is_subgroup_element(x) for x in elements):
            return False

        transcript = _seed_transcript(commitments)
        if not verify_linear(_opening_statements(commitments), proof.openings, transcript):
            logger.warning("[COMMIT] Opening proof failed")
            return False

        for slot, bit_proof in zip(commitments.hobby_slots, proof.slot_bits):
            if not verify_membership(slot, (0, 1), bit_proof, transcript):
                logger.warning("[COMMIT] Hobby slot is not a bit commitment")
                return False

        if not verify_membership(
            product(commitments.hobby_slots),
            tuple(range(self.max_hobbies + 1)),
            proof.hobby_count,
            transcript,
        ):
            logger.warning("[COMMIT] Hobby count outside the allowed range")
            return False

        return True


def fresh_salts(previous: Optional[CommitmentSalts] = None) -> CommitmentSalts:
    """Generate salts sharing no value with a previous salt set."""
    old = set(previous.values()) if previous else set()
    while True:
        salts = CommitmentSalts.generate()
        if not old.intersection(salts.values()):
            return salts
