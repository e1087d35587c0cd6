"""
In-memory profile records.

A record holds only public data: commitments, the well-formedness proof,
the nullifier and the counters. Private attributes and salts stay with the
profile holder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Set

from zklove.core.crypto.commitment import ProfileCommitments, WellFormednessProof
from zklove.core.errors import DuplicateIdentityError, ProfileNotFoundError


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProfileRecord:
    user_id: str
    commitments: ProfileCommitments
    proof: WellFormednessProof
    nullifier_hash: str
    aura_balance: int = 0
    total_matches: int = 0
    successful_chats: int = 0
    is_active: bool = True
    age_bracket: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    last_active_at: str = field(default_factory=utc_now)

    def touch(self) -> None:
        self.last_active_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "commitments": self.commitments.to_dict(),
            "nullifierHash": self.nullifier_hash,
            "auraBalance": self.aura_balance,
            "totalMatches": self.total_matches,
            "successfulChats": self.successful_chats,
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "lastActiveAt": self.last_active_at,
        }


class ProfileStore:
    """
    Profiles keyed by user id.

    An id is reserved before onboarding starts awaiting and released once
    the record is added or onboarding fails, so two concurrent onboardings
    can never both claim the same id.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ProfileRecord] = {}
        self._reserved: Set[str] = set()

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ProfileRecord]:
        return iter(list(self._records.values()))

    def reserve(self, user_id: str) -> bool:
        """Claim an unused id. False if it is taken or already being onboarded."""
        if user_id in self._records or user_id in self._reserved:
            return False
        self._reserved.add(user_id)
        return True

    def release(self, user_id: str) -> None:
        self._reserved.discard(user_id)

    def add(self, record: ProfileRecord) -> None:
        if record.user_id in self._records:
            raise DuplicateIdentityError(f"{record.user_id} already has a profile")
        self._records[record.user_id] = record
        self._reserved.discard(record.user_id)

    def get(self, user_id: str) -> ProfileRecord:
        record = self._records.get(user_id)
        if record is None:
            raise ProfileNotFoundError(f"profile {user_id} not found")
        return record

    def find(self, user_id: str) -> Optional[ProfileRecord]:
        return self._records.get(user_id)

    def active(self) -> List[ProfileRecord]:
        return [r for r in self._records.values() if r.is_active]
