"""
Profile lifecycle: onboarding, re-commit on edit, deactivation.

Onboarding order:
    1. Reserve the user id and the nullifier (before the first await)
    2. Commit to the attributes and verify the well-formedness proof
    3. Submit the public record to the ledger gateway
    4. Register the nullifier (compare-and-set, sybil guard)
    5. Store the record and credit the profile_created grant

Both reservations are released on every exit path, so a failed onboarding
leaves the id and the identity free for a retry.

Profiles are never deleted. Deactivation revokes the nullifier, which
stays in the registry so it can never be reused.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from zklove.core.crypto.commitment import (
    CommitmentGenerator,
    CommitmentOpening,
    CommitmentSalts,
    ProfileCommitments,
    derive_nullifier,
    fresh_salts,
    is_nullifier,
)
from zklove.core.errors import (
    DuplicateIdentityError,
    GatewaySubmissionError,
    InvalidAttributeError,
    ProfileInactiveError,
)
from zklove.infrastructure.events import EventBus, EventKind
from zklove.infrastructure.ledger.audit_chain import LedgerGateway
from zklove.infrastructure.ledger.aura_ledger import AuraLedger
from zklove.infrastructure.registry.nullifier_registry import NullifierRegistry
from zklove.infrastructure.store import ProfileRecord, ProfileStore
from zklove.schemas.dating import AuraReason, ProfileAttributes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileHandle:
    """
    Returned to the profile holder only.

    ``opening`` carries the private attributes and salts; the holder keeps it
    to generate compatibility proofs and to re-commit on edit.
    """
    user_id: str
    commitments: ProfileCommitments
    opening: CommitmentOpening
    nullifier_hash: str
    aura_balance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "commitments": self.commitments.to_dict(),
            "nullifierHash": self.nullifier_hash,
            "auraBalance": self.aura_balance,
        }


class ProfileService:
    def __init__(
        self,
        store: ProfileStore,
        registry: NullifierRegistry,
        ledger: AuraLedger,
        generator: CommitmentGenerator,
        gateway: LedgerGateway,
        event_bus: EventBus,
        profile_created_reward: int = 100,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._generator = generator
        self._gateway = gateway
        self._events = event_bus
        self._reward = profile_created_reward

    async def create_profile(
        self,
        user_id: str,
        attributes: ProfileAttributes,
        identity_secret: Optional[str] = None,
        nullifier_hash: Optional[str] = None,
        salts: Optional[CommitmentSalts] = None,
    ) -> ProfileHandle:
        """
        Raises:
            InvalidAttributeError: bad attributes, salts or identity input.
            DuplicateIdentityError: the nullifier or user id is already registered.
            GatewaySubmissionError: the public record was rejected; nothing is stored.
        """
        if not user_id or not user_id.strip():
            raise InvalidAttributeError("user id must not be blank")
        nullifier = self._resolve_nullifier(identity_secret, nullifier_hash)

        if not self._store.reserve(user_id):
            raise DuplicateIdentityError(f"{user_id} already has a profile")
        try:
            reservation = await self._registry.reserve(nullifier, user_id)
            if not reservation.accepted:
                raise DuplicateIdentityError(
                    "identity already registered", {"reason": reservation.reason}
                )
            try:
                return await self._onboard(user_id, attributes, nullifier, salts)
            finally:
                self._registry.release(nullifier, user_id)
        finally:
            self._store.release(user_id)

    async def _onboard(
        self,
        user_id: str,
        attributes: ProfileAttributes,
        nullifier: str,
        salts: Optional[CommitmentSalts],
    ) -> ProfileHandle:
        """Runs with the user id and the nullifier reserved."""
        result = await asyncio.to_thread(
            self._generator.commit, attributes, salts or fresh_salts(), nullifier
        )
        if not await asyncio.to_thread(
            self._generator.verify_well_formed, result.commitments, result.proof
        ):
            raise InvalidAttributeError("commitments are not well formed")

        await self._gateway.submit_profile(user_id, result.commitments.to_dict())

        outcome = await self._registry.register(nullifier, user_id)
        if not outcome.accepted:
            raise DuplicateIdentityError("identity already registered", {"reason": outcome.reason})

        record = ProfileRecord(
            user_id=user_id,
            commitments=result.commitments,
            proof=result.proof,
            nullifier_hash=nullifier,
            age_bracket=attributes.age_bracket() if attributes.disclose_age_bracket else None,
        )
        self._store.add(record)

        tx = await self._ledger.credit(user_id, self._reward, AuraReason.PROFILE_CREATED)
        await self._submit_transaction(tx.to_dict())

        logger.info(f"[PROFILE] Created {user_id} — nullifier={nullifier[:12]}...")
        self._events.publish(EventKind.PROFILE_CREATED, profile=record.to_dict())
        return ProfileHandle(
            user_id=user_id,
            commitments=result.commitments,
            opening=result.opening,
            nullifier_hash=nullifier,
            aura_balance=record.aura_balance,
        )

    async def update_profile(
        self,
        user_id: str,
        attributes: ProfileAttributes,
        previous_salts: Optional[CommitmentSalts] = None,
    ) -> ProfileHandle:
        """Re-commit with entirely new salts. The nullifier is kept."""
        record = self._store.get(user_id)
        if not record.is_active:
            raise ProfileInactiveError(f"profile {user_id} is deactivated")

        result = await asyncio.to_thread(
            self._generator.commit, attributes, fresh_salts(previous_salts), record.nullifier_hash
        )
        if not await asyncio.to_thread(
            self._generator.verify_well_formed, result.commitments, result.proof
        ):
            raise InvalidAttributeError("commitments are not well formed")

        await self._gateway.submit_profile(user_id, result.commitments.to_dict())

        record.commitments = result.commitments
        record.proof = result.proof
        record.age_bracket = attributes.age_bracket() if attributes.disclose_age_bracket else None
        record.touch()

        logger.info(f"[PROFILE] Re-committed {user_id}")
        self._events.publish(EventKind.PROFILE_UPDATED, profile=record.to_dict())
        return ProfileHandle(
            user_id=user_id,
            commitments=result.commitments,
            opening=result.opening,
            nullifier_hash=record.nullifier_hash,
            aura_balance=record.aura_balance,
        )

    async def deactivate_profile(self, user_id: str) -> ProfileRecord:
        record = self._store.get(user_id)
        if not record.is_active:
            return record
        record.is_active = False
        record.touch()
        await self._registry.revoke(record.nullifier_hash)

        logger.info(f"[PROFILE] Deactivated {user_id}")
        self._events.publish(EventKind.PROFILE_DEACTIVATED, user=user_id)
        return record

    @staticmethod
    def _resolve_nullifier(identity_secret: Optional[str], nullifier_hash: Optional[str]) -> str:
        if nullifier_hash is not None:
            nullifier_hash = nullifier_hash.lower()
            if not is_nullifier(nullifier_hash):
                raise InvalidAttributeError("nullifier hash must be 64 hex characters")
            return nullifier_hash
        if identity_secret is None:
            raise InvalidAttributeError("an identity secret or nullifier hash is required")
        return derive_nullifier(identity_secret)

    async def _submit_transaction(self, transaction: Dict[str, Any]) -> None:
        try:
            await self._gateway.submit_aura_transaction(transaction)
        except GatewaySubmissionError as exc:
            logger.error(f"[PROFILE] Aura transaction {transaction['id']} not submitted — {exc}")
