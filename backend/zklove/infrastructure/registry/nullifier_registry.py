"""
Nullifier Registry — sybil resistance for profiles and swipes.

Every profile is registered under the nullifier derived from its owner's
stable identity secret. At most one active profile may exist per
nullifier, and revoked entries are kept forever so a nullifier can never
be registered again.

Onboarding reserves its nullifier first, so a concurrent onboarding of the
same identity is turned away before anything is submitted to the ledger.

Swipes get their own nullifier, H("swipe" ‖ swiper ‖ target), recorded
once the swipe commits.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

from zklove.infrastructure.store import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationOutcome:
    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "RegistrationOutcome":
        return cls(accepted=True)

    @classmethod
    def duplicate(cls) -> "RegistrationOutcome":
        return cls(accepted=False, reason="DUPLICATE_IDENTITY")


@dataclass
class RegistryEntry:
    nullifier_hash: str
    user_id: str
    registered_at: str
    revoked: bool = False
    revoked_at: Optional[str] = None


def swipe_nullifier(swiper_id: str, target_id: str) -> str:
    material = f"swipe\x00{swiper_id}\x00{target_id}".encode("utf-8")
    return hashlib.sha256(material).hexdigest()


class NullifierRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, RegistryEntry] = {}
        self._pending: Dict[str, str] = {}  # nullifier → reserving user id
        self._swipes: Set[str] = set()
        self._lock = asyncio.Lock()

    async def reserve(self, nullifier_hash: str, user_id: str) -> RegistrationOutcome:
        """Hold a nullifier for one pending onboarding."""
        async with self._lock:
            if nullifier_hash in self._entries or nullifier_hash in self._pending:
                logger.warning(
                    f"[REGISTRY] Reservation refused — nullifier={nullifier_hash[:12]}..."
                )
                return RegistrationOutcome.duplicate()
            self._pending[nullifier_hash] = user_id
        return RegistrationOutcome.ok()

    def release(self, nullifier_hash: str, user_id: str) -> None:
        """Drop a reservation held by user_id. Registered entries are untouched."""
        if self._pending.get(nullifier_hash) == user_id:
            del self._pending[nullifier_hash]

    async def register(self, nullifier_hash: str, user_id: str) -> RegistrationOutcome:
        """
        Compare-and-set: accepted only if the nullifier was never seen and is
        not reserved by another user.
        """
        async with self._lock:
            holder = self._pending.get(nullifier_hash)
            if nullifier_hash in self._entries or holder not in (None, user_id):
                logger.warning(
                    f"[REGISTRY] Duplicate identity rejected — nullifier={nullifier_hash[:12]}..."
                )
                return RegistrationOutcome.duplicate()
            self._entries[nullifier_hash] = RegistryEntry(
                nullifier_hash=nullifier_hash,
                user_id=user_id,
                registered_at=utc_now(),
            )
            self._pending.pop(nullifier_hash, None)
        logger.info(f"[REGISTRY] Registered {user_id} — nullifier={nullifier_hash[:12]}...")
        return RegistrationOutcome.ok()

    async def revoke(self, nullifier_hash: str) -> bool:
        """Mark the entry revoked. The entry itself is never removed."""
        async with self._lock:
            entry = self._entries.get(nullifier_hash)
            if entry is None or entry.revoked:
                return False
            entry.revoked = True
            entry.revoked_at = utc_now()
        logger.info(f"[REGISTRY] Revoked nullifier={nullifier_hash[:12]}...")
        return True

    def is_registered(self, nullifier_hash: str) -> bool:
        return nullifier_hash in self._entries

    def is_active(self, nullifier_hash: str) -> bool:
        entry = self._entries.get(nullifier_hash)
        return entry is not None and not entry.revoked

    def entry(self, nullifier_hash: str) -> Optional[RegistryEntry]:
        return self._entries.get(nullifier_hash)

    # ── Swipe nullifiers ──

    async def register_swipe(self, swiper_id: str, target_id: str) -> bool:
        """Record a committed swipe. False if the pair was already recorded."""
        tag = swipe_nullifier(swiper_id, target_id)
        async with self._lock:
            if tag in self._swipes:
                return False
            self._swipes.add(tag)
        return True

    def has_swiped(self, swiper_id: str, target_id: str) -> bool:
        return swipe_nullifier(swiper_id, target_id) in self._swipes
