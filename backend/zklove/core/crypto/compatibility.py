"""
Compatibility Proofs — zero-knowledge same-city / shared-hobby predicate.

Statement (public):
    C_loc1, C_loc2          location commitments of the two profiles
    A_i, B_i  (i < 15)      hobby slot commitments of the two profiles
    k                       claimed sharedHobbyCount
    score, flags            claimed compatibility outputs
    swiper, target          context identifiers

Witness (private, held by the prover):
    city, geo_1, geo_2, r_loc1, r_loc2, a_i, r_a_i, u_i, t

═══════════════════════════════════════════════════════════════════════════════
PROTOCOL
═══════════════════════════════════════════════════════════════════════════════

  1. City equality. Both location commitments share the G-exponent:
         C_loc1 = G^city · G_GEO^geo_1 · H^r_loc1
         C_loc2 = G^city · G_GEO^geo_2 · H^r_loc2

  2. Slot products. For every catalog slot the prover publishes
         P_i = B_i^{a_i} · H^{u_i}
     and proves the same a_i opens A_i = G^{a_i} · H^{r_a_i}.
     Since a_i, b_i ∈ {0,1} (well-formedness proofs), P_i commits to a_i·b_i.

  3. Count opening.  ∏ P_i · G^{-k} = H^t  proves Σ a_i·b_i = k.

  All three are a single Fiat-Shamir conjunction over a transcript that
  also binds both public commitment sets, the context and every claimed
  output, so a proof cannot be replayed against a different counterpart.

  The age-overlap bonus is attested: it is bound into the transcript and
  the verifier bounds the score to the two values the published formula
  allows for the proven k.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from zklove.core.crypto.commitment import CommitmentOpening, ProfileCommitments
from zklove.core.crypto.group import (
    GROUP_G,
    GROUP_G_GEO,
    GROUP_H,
    GROUP_P,
    GROUP_Q,
    Transcript,
    element_from_hex,
    element_to_hex,
    inverse,
    is_subgroup_element,
    multi_exp,
    product,
    random_scalar,
)
from zklove.core.crypto.sigma import LinearProof, Statement, prove_linear, verify_linear
from zklove.core.errors import (
    IncompatibleError,
    InvalidAttributeError,
    ProofCancelledError,
    ProofTimeoutError,
)
from zklove.schemas.dating import HOBBY_CATALOG

logger = logging.getLogger(__name__)

PROOF_VERSION: int = 1
MAX_SCORE: int = 100


# ═══════════════════════════════════════════════════════════════════════════════
# SCORING POLICY
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScoringPolicy:
    """
    Predicate parameters and the compatibility score formula.

        score = min(100, points_per_hobby · k + (age_bonus if ages overlap))
    """
    points_per_hobby: int = 20
    age_bonus: int = 10
    min_shared_hobbies: int = 1

    @classmethod
    def from_settings(cls, settings) -> "ScoringPolicy":
        return cls(
            points_per_hobby=settings.POINTS_PER_SHARED_HOBBY,
            age_bonus=settings.AGE_OVERLAP_BONUS,
            min_shared_hobbies=settings.MIN_SHARED_HOBBIES,
        )

    def score(self, shared_hobby_count: int, age_overlap: bool) -> int:
        raw = self.points_per_hobby * shared_hobby_count + (self.age_bonus if age_overlap else 0)
        return max(0, min(MAX_SCORE, raw))

    def allowed_scores(self, shared_hobby_count: int) -> Tuple[int, int]:
        return self.score(shared_hobby_count, False), self.score(shared_hobby_count, True)

    def is_compatible(self, city_match: bool, shared_hobby_count: int) -> bool:
        return city_match and shared_hobby_count >= self.min_shared_hobbies


def ages_overlap(first: CommitmentOpening, second: CommitmentOpening) -> bool:
    """Each age falls within the other's preferred range."""
    a, b = first.attributes, second.attributes
    return b.min_age <= a.age <= b.max_age and a.min_age <= b.age <= a.max_age


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PublicSignals:
    is_compatible: bool
    compatibility_score: int
    city_match: bool
    shared_hobby_count: int
    user1_location_commitment: str
    user2_location_commitment: str
    user1_hobbies_commitment: str
    user2_hobbies_commitment: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isCompatible": self.is_compatible,
            "compatibilityScore": self.compatibility_score,
            "cityMatch": self.city_match,
            "sharedHobbyCount": self.shared_hobby_count,
            "user1LocationCommitment": self.user1_location_commitment,
            "user2LocationCommitment": self.user2_location_commitment,
            "user1HobbiesCommitment": self.user1_hobbies_commitment,
            "user2HobbiesCommitment": self.user2_hobbies_commitment,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PublicSignals":
        return cls(
            is_compatible=_strict_bool(data["isCompatible"]),
            compatibility_score=_strict_int(data["compatibilityScore"]),
            city_match=_strict_bool(data["cityMatch"]),
            shared_hobby_count=_strict_int(data["sharedHobbyCount"]),
            user1_location_commitment=str(data["user1LocationCommitment"]),
            user2_location_commitment=str(data["user2LocationCommitment"]),
            user1_hobbies_commitment=str(data["user1HobbiesCommitment"]),
            user2_hobbies_commitment=str(data["user2HobbiesCommitment"]),
        )


@dataclass(frozen=True)
class CompatibilityProof:
    """
    Non-interactive compatibility proof. Immutable once generated.

    Fields:
        proof:                Fiat-Shamir conjunction (nonces, responses, challenge)
        product_commitments:  P_i, one per hobby catalog slot
        public_signals:       claimed predicate outputs and both parties' commitments
        swiper_id / target_id: context bound into the challenge
    """
    proof: LinearProof
    product_commitments: Tuple[int, ...]
    public_signals: PublicSignals
    swiper_id: str
    target_id: str
    proof_version: int = PROOF_VERSION
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proof": self.proof.to_dict(),
            "productCommitments": [element_to_hex(p) for p in self.product_commitments],
            "publicSignals": self.public_signals.to_dict(),
            "swiperId": self.swiper_id,
            "targetId": self.target_id,
            "proofVersion": self.proof_version,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompatibilityProof":
        return cls(
            proof=LinearProof.from_dict(data["proof"]),
            product_commitments=tuple(element_from_hex(p) for p in data["productCommitments"]),
            public_signals=PublicSignals.from_dict(data["publicSignals"]),
            swiper_id=str(data["swiperId"]),
            target_id=str(data["targetId"]),
            proof_version=_strict_int(data.get("proofVersion", PROOF_VERSION)),
            timestamp=float(data.get("timestamp", 0.0)),
        )


def _strict_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError("expected a boolean")
    return value


def _strict_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("expected an integer")
    return value


# ═══════════════════════════════════════════════════════════════════════════════
# SHARED STATEMENT CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════════════

def _seed_transcript(
    swiper_id: str,
    target_id: str,
    user1: ProfileCommitments,
    user2: ProfileCommitments,
    signals: PublicSignals,
    products: Tuple[int, ...],
) -> Transcript:
    transcript = Transcript("zklove-compat-v1")
    transcript.append("version", PROOF_VERSION)
    transcript.append("swiper", swiper_id)
    transcript.append("target", target_id)
    transcript.append_elements("user1_location", [user1.location_commitment])
    transcript.append_elements("user2_location", [user2.location_commitment])
    transcript.append_elements("user1_slots", user1.hobby_slots)
    transcript.append_elements("user2_slots", user2.hobby_slots)
    transcript.append("is_compatible", signals.is_compatible)
    transcript.append("city_match", signals.city_match)
    transcript.append("shared_hobby_count", signals.shared_hobby_count)
    transcript.append("score", signals.compatibility_score)
    transcript.append_elements("products", products)
    return transcript


def _statements(
    user1: ProfileCommitments,
    user2: ProfileCommitments,
    products: Tuple[int, ...],
    shared_hobby_count: int,
) -> List[Statement]:
    statements = [
        Statement(
            user1.location_commitment,
            ((GROUP_G, "city"), (GROUP_G_GEO, "geo_1"), (GROUP_H, "r_loc1")),
        ),
        Statement(
            user2.location_commitment,
            ((GROUP_G, "city"), (GROUP_G_GEO, "geo_2"), (GROUP_H, "r_loc2")),
        ),
    ]
    for i, (a_slot, b_slot, p) in enumerate(zip(user1.hobby_slots, user2.hobby_slots, products)):
        statements.append(Statement(a_slot, ((GROUP_G, f"a{i}"), (GROUP_H, f"ra{i}"))))
        statements.append(Statement(p, ((b_slot, f"a{i}"), (GROUP_H, f"u{i}"))))

    g_k = pow(GROUP_G, shared_hobby_count % GROUP_Q, GROUP_P)
    count_commitment = (product(products) * inverse(g_k)) % GROUP_P
    statements.append(Statement(count_commitment, ((GROUP_H, "t_sum"),)))
    return statements


# ═══════════════════════════════════════════════════════════════════════════════
# PROVER
# ═══════════════════════════════════════════════════════════════════════════════

class CompatibilityProver:
    """
    Generates compatibility proofs on the profile holder's device.

    Both openings are consumed locally and never leave the prover.

    Usage:
        prover = CompatibilityProver()
        proof = prover.prove(mine, my_commitments, theirs, their_commitments,
                             swiper_id="alice", target_id="bob")
        proof = await prover.prove_async(..., timeout=5.0)
    """

    def __init__(
        self,
        policy: Optional[ScoringPolicy] = None,
        default_timeout: float = 30.0,
    ) -> None:
        self.policy = policy or ScoringPolicy()
        self.default_timeout = default_timeout

    def prove(
        self,
        self_opening: CommitmentOpening,
        self_commitments: ProfileCommitments,
        counterpart_opening: CommitmentOpening,
        counterpart_commitments: ProfileCommitments,
        swiper_id: str,
        target_id: str,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CompatibilityProof:
        """
        Prove the compatibility predicate for (self, counterpart).

        Raises:
            IncompatibleError: the predicate is false; no proof is produced.
            InvalidAttributeError: an opening does not match its commitments.
            ProofTimeoutError: the time budget ran out.
            ProofCancelledError: cancel_event was set.
        """
        t0 = time.perf_counter()
        deadline = None if timeout is None else time.monotonic() + timeout

        def checkpoint() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise ProofCancelledError("compatibility proof cancelled")
            if deadline is not None and time.monotonic() > deadline:
                raise ProofTimeoutError(f"compatibility proof exceeded {timeout:.2f}s")

        if not self_opening.opens(self_commitments):
            raise InvalidAttributeError("own opening does not match own commitments")
        checkpoint()
        if not counterpart_opening.opens(counterpart_commitments):
            raise InvalidAttributeError("counterpart opening does not match its commitments")
        checkpoint()

        city_match = self_opening.city_scalar() == counterpart_opening.city_scalar()
        bits_1 = self_opening.hobby_bits()
        bits_2 = counterpart_opening.hobby_bits()
        shared = sum(a * b for a, b in zip(bits_1, bits_2))

        if not self.policy.is_compatible(city_match, shared):
            logger.info(
                f"[PROVER] Predicate false for {swiper_id}→{target_id} — no proof generated"
            )
            raise IncompatibleError("profiles are not compatible", {"city_match": city_match})

        age_overlap = ages_overlap(self_opening, counterpart_opening)
        signals = PublicSignals(
            is_compatible=True,
            compatibility_score=self.policy.score(shared, age_overlap),
            city_match=True,
            shared_hobby_count=shared,
            user1_location_commitment=element_to_hex(self_commitments.location_commitment),
            user2_location_commitment=element_to_hex(counterpart_commitments.location_commitment),
            user1_hobbies_commitment=self_commitments.hobbies_commitment,
            user2_hobbies_commitment=counterpart_commitments.hobbies_commitment,
        )

        # Per-slot product commitments P_i = B_i^{a_i} · H^{u_i}
        witnesses: Dict[str, int] = {
            "city": self_opening.city_scalar(),
            "geo_1": self_opening.geo_scalar(),
            "r_loc1": self_opening.salts.location,
            "geo_2": counterpart_opening.geo_scalar(),
            "r_loc2": counterpart_opening.salts.location,
        }
        products: List[int] = []
        t_sum = 0
        for i, b_slot in enumerate(counterpart_commitments.hobby_slots):
            checkpoint()
            a_i = bits_1[i]
            u_i = random_scalar()
            products.append(multi_exp(((b_slot, a_i), (GROUP_H, u_i))))
            witnesses[f"a{i}"] = a_i
            witnesses[f"ra{i}"] = self_opening.salts.hobbies[i]
            witnesses[f"u{i}"] = u_i
            # P_i = G^{a_i b_i} · H^{a_i s_i + u_i}
            t_sum += a_i * counterpart_opening.salts.hobbies[i] + u_i
        witnesses["t_sum"] = t_sum % GROUP_Q

        checkpoint()
        product_tuple = tuple(products)
        transcript = _seed_transcript(
            swiper_id, target_id, self_commitments, counterpart_commitments, signals, product_tuple,
        )
        proof = prove_linear(
            _statements(self_commitments, counterpart_commitments, product_tuple, shared),
            witnesses,
            transcript,
        )
        checkpoint()

        elapsed = (time.perf_counter() - t0) * 1000
        logger.info(
            f"[PROVER] Compatibility proof {swiper_id}→{target_id} — "
            f"shared={shared} score={signals.compatibility_score} ({elapsed:.0f}ms)"
        )
        return CompatibilityProof(
            proof=proof,
            product_commitments=product_tuple,
            public_signals=signals,
            swiper_id=swiper_id,
            target_id=target_id,
        )

    async def prove_async(
        self,
        self_opening: CommitmentOpening,
        self_commitments: ProfileCommitments,
        counterpart_opening: CommitmentOpening,
        counterpart_commitments: ProfileCommitments,
        swiper_id: str,
        target_id: str,
        timeout: Optional[float] = None,
    ) -> CompatibilityProof:
        """
        Run proof generation in a worker thread under a time budget.

        On timeout or task cancellation the cancel token is set so the
        worker stops at its next checkpoint. Nothing is mutated either way.
        """
        budget = self.default_timeout if timeout is None else timeout
        cancel_event = threading.Event()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.prove,
                    self_opening,
                    self_commitments,
                    counterpart_opening,
                    counterpart_commitments,
                    swiper_id,
                    target_id,
                    None,
                    cancel_event,
                ),
                timeout=budget,
            )
        except asyncio.TimeoutError:
            cancel_event.set()
            logger.warning(f"[PROVER] Proof {swiper_id}→{target_id} timed out after {budget:.2f}s")
            raise ProofTimeoutError(f"compatibility proof exceeded {budget:.2f}s")
        except asyncio.CancelledError:
            cancel_event.set()
            raise


# ═══════════════════════════════════════════════════════════════════════════════
# VERIFIER
# ═══════════════════════════════════════════════════════════════════════════════

class CompatibilityVerifier:
    """
    Stateless verifier for compatibility proofs.

    Checks, in order:
        0. Structure: version, slot counts, element ranges and subgroup
        1. Context: swiper/target match the expected pair
        2. Commitment binding: public signals equal the on-record commitments
        3. Predicate outputs: compatible, city match, k ≥ threshold,
           score ∈ [0, 100] and equal to the formula with or without bonus
        4. The Fiat-Shamir conjunction itself

    Any failure, including a malformed proof, yields False.
    """

    def __init__(self, policy: Optional[ScoringPolicy] = None) -> None:
        self.policy = policy or ScoringPolicy()

    def verify(
        self,
        proof: CompatibilityProof,
        user1: ProfileCommitments,
        user2: ProfileCommitments,
        swiper_id: Optional[str] = None,
        target_id: Optional[str] = None,
        policy: Optional[ScoringPolicy] = None,
    ) -> bool:
        try:
            return self._verify(proof, user1, user2, swiper_id, target_id, policy or self.policy)
        except Exception as exc:
            logger.warning(f"[VERIFIER] Malformed compatibility proof rejected: {exc}")
            return False

    def _verify(
        self,
        proof: CompatibilityProof,
        user1: ProfileCommitments,
        user2: ProfileCommitments,
        swiper_id: Optional[str],
        target_id: Optional[str],
        policy: ScoringPolicy,
    ) -> bool:
        signals = proof.public_signals

        # ── Check 0: Structure ──
        if proof.proof_version != PROOF_VERSION:
            return self._reject("unsupported proof version")
        slots = len(HOBBY_CATALOG)
        if len(proof.product_commitments) != slots:
            return self._reject("wrong number of product commitments")
        if len(user1.hobby_slots) != slots or len(user2.hobby_slots) != slots:
            return self._reject("on-record hobby slots malformed")
        if not all(is_subgroup_element(p) for p in proof.product_commitments):
            return self._reject("product commitment outside the subgroup")
        if not all(1 <= t < GROUP_P for t in proof.proof.nonce_commitments):
            return self._reject("nonce commitment out of range")

        # ── Check 1: Context ──
        if swiper_id is not None and proof.swiper_id != swiper_id:
            return self._reject("swiper does not match proof context")
        if target_id is not None and proof.target_id != target_id:
            return self._reject("target does not match proof context")

        # ── Check 2: Commitment binding (replay protection) ──
        if signals.user1_location_commitment != element_to_hex(user1.location_commitment):
            return self._reject("user1 location commitment mismatch")
        if signals.user2_location_commitment != element_to_hex(user2.location_commitment):
            return self._reject("user2 location commitment mismatch")
        if signals.user1_hobbies_commitment != user1.hobbies_commitment:
            return self._reject("user1 hobbies commitment mismatch")
        if signals.user2_hobbies_commitment != user2.hobbies_commitment:
            return self._reject("user2 hobbies commitment mismatch")

        # ── Check 3: Predicate outputs ──
        k = signals.shared_hobby_count
        if not 0 <= signals.compatibility_score <= MAX_SCORE:
            return self._reject("score outside [0, 100]")
        if not 0 <= k <= slots:
            return self._reject("shared hobby count out of range")
        if not (signals.is_compatible and signals.city_match):
            return self._reject("predicate not satisfied")
        if k < policy.min_shared_hobbies:
            return self._reject("shared hobby count below threshold")
        if signals.compatibility_score not in policy.allowed_scores(k):
            return self._reject("score does not follow the scoring formula")

        # ── Check 4: Sigma conjunction ──
        transcript = _seed_transcript(
            proof.swiper_id, proof.target_id, user1, user2, signals, proof.product_commitments,
        )
        if not verify_linear(
            _statements(user1, user2, proof.product_commitments, k),
            proof.proof,
            transcript,
        ):
            return self._reject("sigma proof failed")

        logger.debug(f"[VERIFIER] Proof {proof.swiper_id}→{proof.target_id} verified")
        return True

    @staticmethod
    def _reject(reason: str) -> bool:
        logger.warning(f"[VERIFIER] Proof rejected — {reason}")
        return False
