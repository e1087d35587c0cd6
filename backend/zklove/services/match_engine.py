"""
Match Engine — swipe state machine, mutual matches and Aura-gated unlocks.

States per ordered pair (viewer → other):

    NO_INTERACTION ──like──▶ ONE_SIDED_LIKE ──mutual like──▶ MATCHED ──contact──▶ CHAT_UNLOCKED
          │                        │
          └─────────pass───────────┴──────▶ PASSED   (absorbing for the viewer)

Every transition of a pair happens inside that pair's asyncio.Lock, so two
simultaneous likes from both sides produce exactly one Match and exactly
two mutual_match credits. Proof verification runs in a worker thread
before the lock is taken.

Ledger writes are never rolled back. When a step after a credit or debit
fails, or the calling task is cancelled there, a compensating entry
(match_reversal, unlock_refund) is appended and the original error or
cancellation is re-raised.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from zklove.core.crypto.compatibility import CompatibilityProof, CompatibilityVerifier
from zklove.core.errors import (
    ChatLockedError,
    DuplicateSwipeError,
    GatewaySubmissionError,
    IncompatibleError,
    InsufficientAuraError,
    InvalidAttributeError,
    LedgerIntegrityError,
    MatchNotFoundError,
    NotMatchedError,
    ProfileInactiveError,
)
from zklove.infrastructure.events import EventBus, EventKind
from zklove.infrastructure.ledger.audit_chain import LedgerGateway
from zklove.infrastructure.ledger.aura_ledger import AuraLedger, AuraTransaction
from zklove.infrastructure.registry.nullifier_registry import NullifierRegistry
from zklove.infrastructure.store import ProfileRecord, ProfileStore, utc_now
from zklove.schemas.dating import TIER_REASONS, AuraReason, UnlockTier

logger = logging.getLogger(__name__)

_MESSAGE_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class PairState(str, Enum):
    NO_INTERACTION = "no_interaction"
    ONE_SIDED_LIKE = "one_sided_like"
    MATCHED = "matched"
    CHAT_UNLOCKED = "chat_unlocked"
    PASSED = "passed"


def match_id_for(user_a: str, user_b: str) -> str:
    """Deterministic id of the unordered pair."""
    first, second = sorted((user_a, user_b))
    return hashlib.sha256(f"{first}\x00{second}".encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SwipeAction:
    swiper_id: str
    target_id: str
    is_like: bool
    proof: Optional[CompatibilityProof] = None
    timestamp: str = field(default_factory=utc_now)


@dataclass
class Match:
    match_id: str
    user1_id: str
    user2_id: str
    user1_liked: bool
    user2_liked: bool
    compatibility_score: int
    matched_at: str
    chat_unlocked: bool = False
    chat_unlocked_at: Optional[str] = None
    shared_secret_hash: Optional[str] = None

    @property
    def is_matched(self) -> bool:
        return self.user1_liked and self.user2_liked

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def counterpart(self, user_id: str) -> str:
        return self.user2_id if user_id == self.user1_id else self.user1_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchId": self.match_id,
            "user1": self.user1_id,
            "user2": self.user2_id,
            "user1Liked": self.user1_liked,
            "user2Liked": self.user2_liked,
            "isMatched": self.is_matched,
            "chatUnlocked": self.chat_unlocked,
            "matchedAt": self.matched_at,
            "chatUnlockedAt": self.chat_unlocked_at,
            "sharedSecretHash": self.shared_secret_hash,
            "compatibilityScore": self.compatibility_score,
        }


@dataclass(frozen=True)
class SwipeOutcome:
    swiper_id: str
    target_id: str
    is_like: bool
    state: PairState
    match: Optional[Match] = None

    @property
    def is_match(self) -> bool:
        return self.match is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swiperId": self.swiper_id,
            "targetId": self.target_id,
            "isLike": self.is_like,
            "state": self.state.value,
            "isMatch": self.is_match,
            "match": self.match.to_dict() if self.match else None,
        }


@dataclass(frozen=True)
class UnlockOutcome:
    match_id: str
    requester_id: str
    tier: UnlockTier
    aura_spent: int
    already_unlocked: bool
    chat_unlocked: bool
    balance: int
    transaction: Optional[AuraTransaction] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchId": self.match_id,
            "requester": self.requester_id,
            "tier": self.tier.value,
            "auraSpent": self.aura_spent,
            "alreadyUnlocked": self.already_unlocked,
            "chatUnlocked": self.chat_unlocked,
            "auraBalance": self.balance,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


@dataclass(frozen=True)
class MatchMessage:
    """Hash of an end-to-end encrypted message. The ciphertext lives off-core."""
    match_id: str
    sender_id: str
    recipient_id: str
    message_hash: str
    index: int
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchId": self.match_id,
            "sender": self.sender_id,
            "recipient": self.recipient_id,
            "messageHash": self.message_hash,
            "index": self.index,
            "timestamp": self.timestamp,
        }


@dataclass
class _Pair:
    liked: Dict[str, int] = field(default_factory=dict)  # swiper → proven score
    passed: Set[str] = field(default_factory=set)
    match: Optional[Match] = None

    def has_swiped(self, user_id: str) -> bool:
        return user_id in self.liked or user_id in self.passed


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class MatchEngine:
    def __init__(
        self,
        store: ProfileStore,
        registry: NullifierRegistry,
        ledger: AuraLedger,
        verifier: CompatibilityVerifier,
        gateway: LedgerGateway,
        event_bus: EventBus,
        unlock_costs: Mapping[UnlockTier, int],
        mutual_match_reward: int = 10,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._verifier = verifier
        self._gateway = gateway
        self._events = event_bus
        self._costs = dict(unlock_costs)
        self._reward = mutual_match_reward
        self._pairs: Dict[str, _Pair] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._unlocks: Dict[Tuple[str, str], Set[UnlockTier]] = {}
        self._messages: Dict[str, List[MatchMessage]] = {}

    # ── Queries ──

    def pair_state(self, viewer_id: str, other_id: str) -> PairState:
        pair = self._pairs.get(match_id_for(viewer_id, other_id))
        if pair is None:
            return PairState.NO_INTERACTION
        if pair.match is not None:
            return PairState.CHAT_UNLOCKED if pair.match.chat_unlocked else PairState.MATCHED
        if viewer_id in pair.passed:
            return PairState.PASSED
        if pair.liked:
            return PairState.ONE_SIDED_LIKE
        return PairState.NO_INTERACTION

    def get_match(self, match_id: str) -> Match:
        pair = self._pairs.get(match_id)
        if pair is None or pair.match is None:
            raise MatchNotFoundError(f"match {match_id} not found")
        return pair.match

    def list_matches(self, user_id: str) -> List[Match]:
        matches = [
            p.match for p in self._pairs.values()
            if p.match is not None and p.match.involves(user_id)
        ]
        return sorted(matches, key=lambda m: m.matched_at)

    def all_matches(self) -> List[Match]:
        return [p.match for p in self._pairs.values() if p.match is not None]

    def unlocked_tiers(self, match_id: str, requester_id: str) -> Set[UnlockTier]:
        return set(self._unlocks.get((match_id, requester_id), set()))

    # ── Swipes ──

    async def record_swipe(self, swipe: SwipeAction) -> SwipeOutcome:
        """
        Record a like or a pass.

        Raises:
            InvalidAttributeError: self-swipe.
            ProfileNotFoundError / ProfileInactiveError: either side unknown or deactivated.
            DuplicateSwipeError: the (swiper, target) pair was already recorded.
            IncompatibleError: a like without a proof that verifies.
        """
        swiper_id, target_id = swipe.swiper_id, swipe.target_id
        if swiper_id == target_id:
            raise InvalidAttributeError("cannot swipe on yourself")

        swiper = self._store.get(swiper_id)
        target = self._store.get(target_id)
        self._require_active(swiper, target)
        if self._registry.has_swiped(swiper_id, target_id):
            raise DuplicateSwipeError(f"{swiper_id} already swiped on {target_id}")

        score = 0
        if swipe.is_like:
            if swipe.proof is None:
                raise IncompatibleError("a like requires a compatibility proof")
            verified = await asyncio.to_thread(
                self._verifier.verify,
                swipe.proof,
                swiper.commitments,
                target.commitments,
                swiper_id,
                target_id,
            )
            if not verified:
                raise IncompatibleError("compatibility proof did not verify")
            score = swipe.proof.public_signals.compatibility_score

        match_id = match_id_for(swiper_id, target_id)
        async with self._lock_for(match_id):
            pair = self._pairs.setdefault(match_id, _Pair())
            if pair.has_swiped(swiper_id):
                raise DuplicateSwipeError(f"{swiper_id} already swiped on {target_id}")
            self._require_active(swiper, target)

            match: Optional[Match] = None
            if not swipe.is_like:
                pair.passed.add(swiper_id)
            elif target_id in pair.liked:
                match = await self._create_match(
                    match_id, swiper, target, min(score, pair.liked[target_id])
                )
                pair.liked[swiper_id] = score
                pair.match = match
            else:
                pair.liked[swiper_id] = score

            await self._registry.register_swipe(swiper_id, target_id)
            swiper.touch()
            state = self.pair_state(swiper_id, target_id)

        logger.info(
            f"[MATCH] {swiper_id} {'liked' if swipe.is_like else 'passed'} {target_id} — {state.value}"
        )
        self._events.publish(
            EventKind.SWIPE_RECORDED,
            swiper=swiper_id,
            target=target_id,
            isLike=swipe.is_like,
            state=state.value,
        )
        if match is not None:
            self._events.publish(EventKind.MATCH_CREATED, match=match.to_dict())
        return SwipeOutcome(
            swiper_id=swiper_id,
            target_id=target_id,
            is_like=swipe.is_like,
            state=state,
            match=match,
        )

    async def _create_match(
        self,
        match_id: str,
        swiper: ProfileRecord,
        target: ProfileRecord,
        score: int,
    ) -> Match:
        """Credit both sides and submit the match. Called under the pair lock."""
        user1_id, user2_id = sorted((swiper.user_id, target.user_id))
        match = Match(
            match_id=match_id,
            user1_id=user1_id,
            user2_id=user2_id,
            user1_liked=True,
            user2_liked=True,
            compatibility_score=score,
            matched_at=utc_now(),
        )

        credits: List[AuraTransaction] = []
        try:
            for user_id in (user1_id, user2_id):
                credits.append(
                    await self._ledger.credit(user_id, self._reward, AuraReason.MUTUAL_MATCH, match_id)
                )
            await self._gateway.submit_match(match.to_dict())
            for tx in credits:
                await self._gateway.submit_aura_transaction(tx.to_dict())
        except (LedgerIntegrityError, GatewaySubmissionError, asyncio.CancelledError) as exc:
            logger.error(f"[MATCH] Match {match_id[:12]}... aborted — {type(exc).__name__}: {exc}")
            for tx in credits:
                await self._compensate(tx, AuraReason.MATCH_REVERSAL)
            raise

        for record in (swiper, target):
            record.total_matches += 1
        logger.info(
            f"[MATCH] Mutual match {user1_id} ⇄ {user2_id} — id={match_id[:12]}... score={score}"
        )
        return match

    # ── Unlocks ──

    async def unlock_detail(self, match_id: str, requester_id: str, tier: UnlockTier) -> UnlockOutcome:
        """
        Spend Aura to unlock a disclosure tier of a match. Idempotent per tier.
        Contact costs nothing once the counterpart has opened the chat.

        Raises:
            MatchNotFoundError: unknown match.
            NotMatchedError: requester is not a matched participant.
            InsufficientAuraError: balance below the tier cost; nothing changes.
            GatewaySubmissionError: the debit was refunded with unlock_refund.
        """
        pair = self._pairs.get(match_id)
        if pair is None or pair.match is None:
            raise MatchNotFoundError(f"match {match_id} not found")
        match = pair.match
        if not match.involves(requester_id) or not match.is_matched:
            raise NotMatchedError(f"{requester_id} is not matched in {match_id}")

        requester = self._store.get(requester_id)
        counterpart = self._store.get(match.counterpart(requester_id))
        self._require_active(requester, counterpart)

        chat_opened = False
        async with self._lock_for(match_id):
            unlocked = self._unlocks.setdefault((match_id, requester_id), set())
            # The chat is shared: once either side opened it, contact is free.
            if tier is UnlockTier.CONTACT and match.chat_unlocked:
                unlocked.add(tier)
            if tier in unlocked:
                return UnlockOutcome(
                    match_id=match_id,
                    requester_id=requester_id,
                    tier=tier,
                    aura_spent=0,
                    already_unlocked=True,
                    chat_unlocked=match.chat_unlocked,
                    balance=requester.aura_balance,
                )

            cost = self._costs[tier]
            tx = await self._ledger.debit(requester_id, cost, TIER_REASONS[tier], match_id)
            try:
                await self._gateway.submit_aura_transaction(tx.to_dict())
            except (GatewaySubmissionError, asyncio.CancelledError):
                logger.error(f"[MATCH] Unlock {tier.value} by {requester_id} not submitted — refunding")
                await self._compensate(tx, AuraReason.UNLOCK_REFUND)
                raise

            unlocked.add(tier)
            if tier is UnlockTier.CONTACT:
                match.chat_unlocked = True
                match.chat_unlocked_at = utc_now()
                match.shared_secret_hash = _shared_secret_hash(match_id, requester, counterpart)
                requester.successful_chats += 1
                counterpart.successful_chats += 1
                chat_opened = True
            balance = requester.aura_balance

        logger.info(f"[MATCH] {requester_id} unlocked {tier.value} on {match_id[:12]}... for {cost} Aura")
        self._events.publish(
            EventKind.DETAIL_UNLOCKED,
            matchId=match_id,
            requester=requester_id,
            tier=tier.value,
            auraSpent=cost,
        )
        if chat_opened:
            self._events.publish(EventKind.CHAT_UNLOCKED, match=match.to_dict())
        return UnlockOutcome(
            match_id=match_id,
            requester_id=requester_id,
            tier=tier,
            aura_spent=cost,
            already_unlocked=False,
            chat_unlocked=match.chat_unlocked,
            balance=balance,
            transaction=tx,
        )

    # ── Messages ──

    async def post_message(self, match_id: str, sender_id: str, message_hash: str) -> MatchMessage:
        """
        Record the hash of an encrypted message in an unlocked chat.

        Raises:
            InvalidAttributeError: the hash is not 32 bytes of hex.
            MatchNotFoundError: unknown match.
            NotMatchedError: sender is not a participant.
            ChatLockedError: neither side has unlocked contact yet.
            GatewaySubmissionError: the message was not recorded.
        """
        digest = message_hash.lower()
        if digest.startswith("0x"):
            digest = digest[2:]
        if not _MESSAGE_HASH_RE.match(digest):
            raise InvalidAttributeError("message hash must be 64 hex characters")

        match = self.get_match(match_id)
        if not match.involves(sender_id):
            raise NotMatchedError(f"{sender_id} is not matched in {match_id}")
        recipient_id = match.counterpart(sender_id)
        self._require_active(self._store.get(sender_id), self._store.get(recipient_id))

        async with self._lock_for(match_id):
            if not match.chat_unlocked:
                raise ChatLockedError(f"chat for {match_id} is locked")
            thread = self._messages.setdefault(match_id, [])
            message = MatchMessage(
                match_id=match_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                message_hash=digest,
                index=len(thread),
            )
            await self._gateway.submit_message(message.to_dict())
            thread.append(message)

        logger.info(f"[MATCH] {sender_id} posted message #{message.index} on {match_id[:12]}...")
        self._events.publish(EventKind.MESSAGE_POSTED, message=message.to_dict())
        return message

    def list_messages(self, match_id: str) -> List[MatchMessage]:
        self.get_match(match_id)
        return list(self._messages.get(match_id, []))

    # ── Internals ──

    def _lock_for(self, match_id: str) -> asyncio.Lock:
        lock = self._locks.get(match_id)
        if lock is None:
            lock = self._locks[match_id] = asyncio.Lock()
        return lock

    def _require_active(self, *records: ProfileRecord) -> None:
        for record in records:
            if not record.is_active or not self._registry.is_active(record.nullifier_hash):
                raise ProfileInactiveError(f"profile {record.user_id} is deactivated")

    async def _compensate(self, original: AuraTransaction, reason: AuraReason) -> None:
        """Append the inverse of ``original``; the original entry stays."""
        try:
            if original.amount > 0:
                tx = await self._ledger.debit(
                    original.user_id, original.amount, reason, original.related_match_id
                )
            else:
                tx = await self._ledger.credit(
                    original.user_id, -original.amount, reason, original.related_match_id
                )
        except (InsufficientAuraError, LedgerIntegrityError) as exc:
            logger.critical(
                f"[MATCH] Compensation {reason.value} for {original.user_id} failed — {exc}"
            )
            self._events.publish(
                EventKind.INTEGRITY_ALERT,
                user=original.user_id,
                transaction=original.to_dict(),
                compensation=reason.value,
            )
            return

        try:
            await self._gateway.submit_aura_transaction(tx.to_dict())
        except GatewaySubmissionError as exc:
            logger.error(f"[MATCH] Compensating entry {tx.transaction_id} not submitted — {exc}")


def _shared_secret_hash(match_id: str, a: ProfileRecord, b: ProfileRecord) -> str:
    first, second = sorted((a.nullifier_hash, b.nullifier_hash))
    return hashlib.sha256(f"chat\x00{match_id}\x00{first}\x00{second}".encode("utf-8")).hexdigest()
