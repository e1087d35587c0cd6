"""
Schnorr Group Arithmetic — shared primitives for commitments and proofs.

Every commitment and zero-knowledge proof in zklove lives in the
prime-order subgroup of quadratic residues modulo the RFC 3526 2048-bit
safe prime.

═══════════════════════════════════════════════════════════════════════════════
GROUP
═══════════════════════════════════════════════════════════════════════════════

  p  = RFC 3526 §3 safe prime (2048 bits)
  q  = (p - 1) / 2, prime
  G  = 2                       (a quadratic residue since p ≡ 7 mod 8)
  H  = hash_to_subgroup("zklove-pedersen-h-v1")
  G_GEO = hash_to_subgroup("zklove-pedersen-geo-v1")

  H and G_GEO are derived by hashing public labels, so nobody knows
  log_G(H), log_G(G_GEO) or log_H(G_GEO). Binding of multi-base Pedersen
  commitments rests on exactly that.

  Security level: 112 bits (NIST SP 800-57 Part 1, Table 2).
"""

from __future__ import annotations

import hashlib
import secrets
import struct
from typing import Iterable, Sequence, Tuple, Union


# ═══════════════════════════════════════════════════════════════════════════════
# SCHNORR GROUP PARAMETERS — RFC 3526 §3, 2048-bit MODP Group
# ═══════════════════════════════════════════════════════════════════════════════

GROUP_P: int = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)

GROUP_G: int = 2
GROUP_Q: int = (GROUP_P - 1) // 2

ELEMENT_BYTES: int = 256
SCALAR_BYTES: int = 256
DIGEST_BYTES: int = 32


def derive_generator(label: bytes) -> int:
    """
    Derive an independent subgroup generator from a public label.

    The label is expanded with BLAKE2b and squared mod p, which projects
    it into the quadratic-residue subgroup. For a safe prime every residue
    other than 1 generates the whole order-q subgroup.
    """
    seed = hashlib.blake2b(label, digest_size=64).digest()
    t = int.from_bytes(seed, "big") % GROUP_P
    g = pow(t, 2, GROUP_P)
    assert g > 1, "Degenerate generator, change the label"
    return g


GROUP_H: int = derive_generator(b"zklove-pedersen-h-v1")
GROUP_G_GEO: int = derive_generator(b"zklove-pedersen-geo-v1")


# ═══════════════════════════════════════════════════════════════════════════════
# SCALARS & ELEMENTS
# ═══════════════════════════════════════════════════════════════════════════════

def random_scalar() -> int:
    """Sample a uniform random scalar from Z_q \\ {0}."""
    while True:
        r = secrets.randbelow(GROUP_Q)
        if r > 0:
            return r


def hash_to_scalar(domain: str, *parts: Union[str, int, float, bytes]) -> int:
    """
    Map a tuple of attribute values to a scalar in Z_q.

    Each part is length-prefixed so ("ab", "c") and ("a", "bc") never
    collide. The domain string separates the different commitment fields.
    """
    h = hashlib.blake2b(digest_size=DIGEST_BYTES, person=b"zklove-attr-v1")
    h.update(_encode(domain))
    for part in parts:
        h.update(_encode(part))
    scalar = int.from_bytes(h.digest(), "big") % GROUP_Q
    return scalar if scalar > 0 else 1


def element_to_bytes(x: int) -> bytes:
    return x.to_bytes(ELEMENT_BYTES, "big")


def element_to_hex(x: int) -> str:
    return element_to_bytes(x).hex()


def element_from_hex(value: str) -> int:
    """Parse a hex-encoded group element. Raises ValueError when out of range."""
    x = int(value, 16)
    if not 1 <= x < GROUP_P:
        raise ValueError("group element out of range")
    return x


def scalar_from_hex(value: str) -> int:
    x = int(value, 16)
    if not 0 <= x < GROUP_Q:
        raise ValueError("scalar out of range")
    return x


def scalar_to_hex(x: int) -> str:
    return x.to_bytes(SCALAR_BYTES, "big").hex()


def is_subgroup_element(x: int) -> bool:
    """True when x lies in the order-q subgroup (x^q ≡ 1 mod p)."""
    return 1 <= x < GROUP_P and pow(x, GROUP_Q, GROUP_P) == 1


def multi_exp(pairs: Iterable[Tuple[int, int]]) -> int:
    """Compute ∏ base^exp (mod p)."""
    acc = 1
    for base, exp in pairs:
        acc = (acc * pow(base, exp % GROUP_Q, GROUP_P)) % GROUP_P
    return acc


def product(elements: Sequence[int]) -> int:
    acc = 1
    for x in elements:
        acc = (acc * x) % GROUP_P
    return acc


def inverse(x: int) -> int:
    return pow(x, -1, GROUP_P)


# ═══════════════════════════════════════════════════════════════════════════════
# FIAT-SHAMIR TRANSCRIPT
# ═══════════════════════════════════════════════════════════════════════════════

class Transcript:
    """
    Running BLAKE2b transcript for Fiat-Shamir challenges.

    Every value absorbed is labelled and length-prefixed, so prover and
    verifier derive the same challenge only when they saw the same
    statement in the same order.
    """

    def __init__(self, protocol: str) -> None:
        self._h = hashlib.blake2b(digest_size=DIGEST_BYTES, person=b"zklove-fs-v1")
        self.append("protocol", protocol)

    def append(self, label: str, value: Union[str, int, float, bool, bytes]) -> None:
        self._h.update(_encode(label))
        if isinstance(value, bool):
            self._h.update(struct.pack(">?", value))
        else:
            self._h.update(_encode(value))

    def append_elements(self, label: str, values: Sequence[int]) -> None:
        self.append(label, len(values))
        for v in values:
            self._h.update(element_to_bytes(v))

    def challenge(self) -> int:
        """Derive the challenge scalar e ∈ Z_q from everything absorbed."""
        return int.from_bytes(self._h.copy().digest(), "big") % GROUP_Q


def _encode(value: Union[str, int, float, bytes]) -> bytes:
    if isinstance(value, bytes):
        raw = value
    elif isinstance(value, str):
        raw = value.encode("utf-8")
    elif isinstance(value, int):
        length = max(1, (value.bit_length() + 8) // 8)
        raw = value.to_bytes(length, "big", signed=True)
    elif isinstance(value, float):
        raw = struct.pack(">d", value)
    else:
        raise TypeError(f"cannot encode {type(value).__name__}")
    return struct.pack(">I", len(raw)) + raw

