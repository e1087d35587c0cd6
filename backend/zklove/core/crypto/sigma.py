"""
Sigma Protocols — non-interactive proofs over the Schnorr group.

Two building blocks cover every statement zklove needs to prove:

  LinearProof      Conjunction of multi-base representations with shared
                   witnesses:  C_s = ∏ base_{s,j}^{w_{s,j}}  for all s.
                   A witness name appearing in several statements is
                   proven to take the SAME value in all of them (this is
                   how equality and product relations are expressed).

  MembershipProof  1-of-n OR proof (Cramer-Damgård-Schoenmakers) that a
                   Pedersen commitment C = G^v · H^r opens to some
                   v ∈ allowed, without revealing which one.

Both are made non-interactive with the Fiat-Shamir transform over a
shared Transcript; callers seed the transcript with their context before
handing it in, and verifiers must replay the exact same sequence.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from zklove.core.crypto.group import (
    GROUP_G,
    GROUP_H,
    GROUP_P,
    GROUP_Q,
    Transcript,
    element_from_hex,
    element_to_hex,
    inverse,
    multi_exp,
    random_scalar,
    scalar_from_hex,
    scalar_to_hex,
)


@dataclass(frozen=True)
class Statement:
    """C = ∏ base^witness[name] over the listed terms."""
    commitment: int
    terms: Tuple[Tuple[int, str], ...]


# ═══════════════════════════════════════════════════════════════════════════════
# LINEAR RELATIONS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LinearProof:
    nonce_commitments: Tuple[int, ...]
    responses: Tuple[Tuple[str, int], ...]
    challenge: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "t": [element_to_hex(t) for t in self.nonce_commitments],
            "z": {name: scalar_to_hex(z) for name, z in self.responses},
            "e": scalar_to_hex(self.challenge),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LinearProof":
        return cls(
            nonce_commitments=tuple(element_from_hex(t) for t in data["t"]),
            responses=tuple(
                (str(name), scalar_from_hex(z)) for name, z in dict(data["z"]).items()
            ),
            challenge=scalar_from_hex(data["e"]),
        )


def _absorb_statements(transcript: Transcript, statements: Sequence[Statement]) -> None:
    transcript.append("statements", len(statements))
    for st in statements:
        transcript.append_elements("commitment", [st.commitment])
        transcript.append_elements("bases", [base for base, _ in st.terms])
        transcript.append("witnesses", ",".join(name for _, name in st.terms))


def prove_linear(
    statements: Sequence[Statement],
    witnesses: Mapping[str, int],
    transcript: Transcript,
) -> LinearProof:
    """
    Prove knowledge of witnesses satisfying every statement at once.

    Protocol:
        1. Sample one nonce k_w per distinct witness name
        2. T_s = ∏ base^k_w for each statement
        3. e = H(transcript ‖ statements ‖ T)
        4. z_w = k_w + e·w (mod q)
    """
    names = sorted({name for st in statements for _, name in st.terms})
    nonces = {name: random_scalar() for name in names}

    nonce_commitments = tuple(
        multi_exp((base, nonces[name]) for base, name in st.terms)
        for st in statements
    )

    _absorb_statements(transcript, statements)
    transcript.append_elements("nonce_commitments", nonce_commitments)
    e = transcript.challenge()

    responses = tuple(
        (name, (nonces[name] + e * witnesses[name]) % GROUP_Q) for name in names
    )
    return LinearProof(nonce_commitments=nonce_commitments, responses=responses, challenge=e)


def verify_linear(
    statements: Sequence[Statement],
    proof: LinearProof,
    transcript: Transcript,
) -> bool:
    """
    Check ∏ base^z_w ≡ T_s · C_s^e (mod p) for every statement.

    Proof:
        ∏ base^(k_w + e·w) = ∏ base^k_w · (∏ base^w)^e = T_s · C_s^e  ✓
    """
    if len(proof.nonce_commitments) != len(statements):
        return False

    responses = dict(proof.responses)
    names = {name for st in statements for _, name in st.terms}
    if set(responses) != names:
        return False

    _absorb_statements(transcript, statements)
    transcript.append_elements("nonce_commitments", proof.nonce_commitments)
    e = transcript.challenge()
    if e != proof.challenge:
        return False

    for st, t in zip(statements, proof.nonce_commitments):
        lhs = multi_exp((base, responses[name]) for base, name in st.terms)
        rhs = (t * pow(st.commitment, e, GROUP_P)) % GROUP_P
        if lhs != rhs:
            return False
    return True


# ═══════════════════════════════════════════════════════════════════════════════
# SET MEMBERSHIP (OR-PROOF)
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MembershipProof:
    nonce_commitments: Tuple[int, ...]
    challenges: Tuple[int, ...]
    responses: Tuple[int, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "t": [element_to_hex(t) for t in self.nonce_commitments],
            "e": [scalar_to_hex(e) for e in self.challenges],
            "z": [scalar_to_hex(z) for z in self.responses],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MembershipProof":
        return cls(
            nonce_commitments=tuple(element_from_hex(t) for t in data["t"]),
            challenges=tuple(scalar_from_hex(e) for e in data["e"]),
            responses=tuple(scalar_from_hex(z) for z in data["z"]),
        )


def _shifted_commitments(commitment: int, allowed: Sequence[int]) -> List[int]:
    """D_s = C · G^{-s}; equals H^r exactly for the committed s."""
    return [
        (commitment * inverse(pow(GROUP_G, s % GROUP_Q, GROUP_P))) % GROUP_P
        for s in allowed
    ]


def prove_membership(
    commitment: int,
    value: int,
    blinding: int,
    allowed: Sequence[int],
    transcript: Transcript,
) -> MembershipProof:
    """
    Prove C = G^v · H^r with v ∈ allowed.

    The real branch is a Schnorr proof of log_H(D_v); every other branch is
    simulated with a chosen (e_i, z_i). The branch challenges must sum to
    the Fiat-Shamir challenge, so at most one branch can be simulated
    freely by a cheating prover.
    """
    if value not in allowed:
        raise ValueError("committed value is outside the allowed set")

    real = list(allowed).index(value)
    shifted = _shifted_commitments(commitment, allowed)

    n = len(allowed)
    challenges = [0] * n
    responses = [0] * n
    nonce_commitments = [0] * n

    k = random_scalar()
    for i in range(n):
        if i == real:
            nonce_commitments[i] = pow(GROUP_H, k, GROUP_P)
            continue
        challenges[i] = random_scalar()
        responses[i] = random_scalar()
        # T_i = H^z_i · D_i^{-e_i}
        nonce_commitments[i] = (
            pow(GROUP_H, responses[i], GROUP_P)
            * pow(inverse(shifted[i]), challenges[i], GROUP_P)
        ) % GROUP_P

    transcript.append_elements("member_commitment", [commitment])
    transcript.append("allowed", ",".join(str(s) for s in allowed))
    transcript.append_elements("member_nonces", nonce_commitments)
    e = transcript.challenge()

    challenges[real] = (e - sum(challenges)) % GROUP_Q
    responses[real] = (k + challenges[real] * blinding) % GROUP_Q

    return MembershipProof(
        nonce_commitments=tuple(nonce_commitments),
        challenges=tuple(challenges),
        responses=tuple(responses),
    )


def verify_membership(
    commitment: int,
    allowed: Sequence[int],
    proof: MembershipProof,
    transcript: Transcript,
) -> bool:
    n = len(allowed)
    if not (len(proof.nonce_commitments) == len(proof.challenges) == len(proof.responses) == n):
        return False

    transcript.append_elements("member_commitment", [commitment])
    transcript.append("allowed", ",".join(str(s) for s in allowed))
    transcript.append_elements("member_nonces", proof.nonce_commitments)
    e = transcript.challenge()

    if sum(proof.challenges) % GROUP_Q != e:
        return False

    shifted = _shifted_commitments(commitment, allowed)
    for t, e_i, z_i, d in zip(proof.nonce_commitments, proof.challenges, proof.responses, shifted):
        if pow(GROUP_H, z_i, GROUP_P) != (t * pow(d, e_i, GROUP_P)) % GROUP_P:
            return False
    return True
