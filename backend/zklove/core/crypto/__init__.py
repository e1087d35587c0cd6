"""
zklove Cryptographic Core.

Pedersen commitments and Fiat-Shamir sigma proofs over the RFC 3526
2048-bit Schnorr group.

Public API:
    - CommitmentGenerator:     Commit to profile attributes + well-formedness proof.
    - CompatibilityProver:     Prove the same-city / shared-hobby predicate.
    - CompatibilityVerifier:   Verify a compatibility proof against on-record commitments.
    - derive_nullifier:        Sybil-resistant identity tag from a stable secret.
"""

from zklove.core.crypto.commitment import (
    CommitmentGenerator,
    CommitmentOpening,
    CommitmentResult,
    CommitmentSalts,
    ProfileCommitments,
    WellFormednessProof,
    derive_nullifier,
    fresh_salts,
    is_nullifier,
)
from zklove.core.crypto.compatibility import (
    CompatibilityProof,
    CompatibilityProver,
    CompatibilityVerifier,
    PublicSignals,
    ScoringPolicy,
)

__all__ = [
    "CommitmentGenerator",
    "CommitmentOpening",
    "CommitmentResult",
    "CommitmentSalts",
    "ProfileCommitments",
    "WellFormednessProof",
    "derive_nullifier",
    "fresh_salts",
    "is_nullifier",
    "CompatibilityProof",
    "CompatibilityProver",
    "CompatibilityVerifier",
    "PublicSignals",
    "ScoringPolicy",
]
