"""
ZKDatingService — the operations exposed to presentation collaborators.

Wires the commitment generator, prover, verifier, match engine, Aura
ledger and nullifier registry together through their constructors.
Nothing here is a process-wide singleton: tests and the HTTP app each
build their own instance with ``ZKDatingService.from_settings``.
"""

import asyncio
import logging
from typing import List, Optional

from zklove.core.config import Settings
from zklove.core.crypto.commitment import CommitmentGenerator, CommitmentOpening, CommitmentSalts
from zklove.core.crypto.compatibility import (
    CompatibilityProof,
    CompatibilityProver,
    CompatibilityVerifier,
    ScoringPolicy,
)
from zklove.core.errors import IncompatibleError
from zklove.infrastructure.events import EventBus
from zklove.infrastructure.ledger.audit_chain import AuditChainGateway, LedgerGateway
from zklove.infrastructure.ledger.aura_ledger import AuraLedger, AuraTransaction
from zklove.infrastructure.registry.nullifier_registry import NullifierRegistry
from zklove.infrastructure.store import ProfileRecord, ProfileStore
from zklove.schemas.dating import (
    AnonymousCard,
    DatingStats,
    ProfileAttributes,
    UnlockCosts,
    UnlockTier,
)
from zklove.services.match_engine import (
    Match,
    MatchEngine,
    MatchMessage,
    SwipeAction,
    SwipeOutcome,
    UnlockOutcome,
)
from zklove.services.profile_service import ProfileHandle, ProfileService

logger = logging.getLogger(__name__)


class ZKDatingService:
    def __init__(
        self,
        store: ProfileStore,
        registry: NullifierRegistry,
        ledger: AuraLedger,
        prover: CompatibilityProver,
        verifier: CompatibilityVerifier,
        profiles: ProfileService,
        engine: MatchEngine,
        gateway: LedgerGateway,
        event_bus: EventBus,
        unlock_costs: UnlockCosts,
    ) -> None:
        self.store = store
        self.registry = registry
        self.ledger = ledger
        self.prover = prover
        self.verifier = verifier
        self.profiles = profiles
        self.engine = engine
        self.gateway = gateway
        self.events = event_bus
        self.unlock_costs = unlock_costs

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        gateway: Optional[LedgerGateway] = None,
    ) -> "ZKDatingService":
        policy = ScoringPolicy.from_settings(settings)
        costs = settings.unlock_costs()
        store = ProfileStore()
        registry = NullifierRegistry()
        events = EventBus(queue_size=settings.EVENT_QUEUE_SIZE)
        gateway = gateway or AuditChainGateway()
        ledger = AuraLedger(store, settings.LEDGER_SIGNING_KEY, events)
        verifier = CompatibilityVerifier(policy)

        profiles = ProfileService(
            store=store,
            registry=registry,
            ledger=ledger,
            generator=CommitmentGenerator.from_settings(settings),
            gateway=gateway,
            event_bus=events,
            profile_created_reward=settings.PROFILE_CREATED_REWARD,
        )
        engine = MatchEngine(
            store=store,
            registry=registry,
            ledger=ledger,
            verifier=verifier,
            gateway=gateway,
            event_bus=events,
            unlock_costs={UnlockTier(tier): cost for tier, cost in costs.items()},
            mutual_match_reward=settings.MUTUAL_MATCH_REWARD,
        )
        return cls(
            store=store,
            registry=registry,
            ledger=ledger,
            prover=CompatibilityProver(policy, default_timeout=settings.PROOF_TIMEOUT_SECONDS),
            verifier=verifier,
            profiles=profiles,
            engine=engine,
            gateway=gateway,
            event_bus=events,
            unlock_costs=UnlockCosts(**costs),
        )

    # ── Profiles ──

    async def create_profile(
        self,
        user_id: str,
        attributes: ProfileAttributes,
        identity_secret: Optional[str] = None,
        nullifier_hash: Optional[str] = None,
        salts: Optional[CommitmentSalts] = None,
    ) -> ProfileHandle:
        return await self.profiles.create_profile(
            user_id, attributes, identity_secret, nullifier_hash, salts
        )

    async def update_profile(
        self,
        user_id: str,
        attributes: ProfileAttributes,
        previous_salts: Optional[CommitmentSalts] = None,
    ) -> ProfileHandle:
        return await self.profiles.update_profile(user_id, attributes, previous_salts)

    async def deactivate_profile(self, user_id: str) -> ProfileRecord:
        return await self.profiles.deactivate_profile(user_id)

    def get_profile(self, user_id: str) -> ProfileRecord:
        return self.store.get(user_id)

    # ── Proofs & cards ──

    async def prove_compatibility(
        self,
        swiper_id: str,
        self_opening: CommitmentOpening,
        target_id: str,
        counterpart_opening: CommitmentOpening,
        timeout: Optional[float] = None,
    ) -> CompatibilityProof:
        """Prove against the two on-record commitment sets."""
        swiper = self.store.get(swiper_id)
        target = self.store.get(target_id)
        return await self.prover.prove_async(
            self_opening,
            swiper.commitments,
            counterpart_opening,
            target.commitments,
            swiper_id=swiper_id,
            target_id=target_id,
            timeout=timeout,
        )

    def list_candidates(self, viewer_id: str) -> List[ProfileRecord]:
        """Active profiles the viewer has not swiped on yet."""
        self.store.get(viewer_id)
        return [
            record for record in self.store.active()
            if record.user_id != viewer_id
            and self.registry.is_active(record.nullifier_hash)
            and not self.registry.has_swiped(viewer_id, record.user_id)
        ]

    async def get_anonymous_card(
        self,
        viewer_id: str,
        target_id: str,
        proof: CompatibilityProof,
    ) -> AnonymousCard:
        """
        Build the browsing card for ``target_id`` from a verified proof.

        Raises IncompatibleError when the proof does not verify against
        the two on-record profiles.
        """
        viewer = self.store.get(viewer_id)
        target = self.store.get(target_id)
        verified = await asyncio.to_thread(
            self.verifier.verify,
            proof,
            viewer.commitments,
            target.commitments,
            viewer_id,
            target_id,
        )
        if not verified:
            raise IncompatibleError("compatibility proof did not verify")

        signals = proof.public_signals
        return AnonymousCard(
            id=target_id,
            city_match=signals.city_match,
            shared_hobby_count=signals.shared_hobby_count,
            compatibility_score=signals.compatibility_score,
            age_range=target.age_bracket,
            aura_required_to_unlock=self.unlock_costs,
        )

    # ── Swipes, matches, unlocks ──

    async def swipe(self, swipe: SwipeAction) -> SwipeOutcome:
        return await self.engine.record_swipe(swipe)

    async def unlock_detail(self, match_id: str, requester_id: str, tier: UnlockTier) -> UnlockOutcome:
        return await self.engine.unlock_detail(match_id, requester_id, tier)

    def list_matches(self, user_id: str) -> List[Match]:
        self.store.get(user_id)
        return self.engine.list_matches(user_id)

    async def post_message(self, match_id: str, sender_id: str, message_hash: str) -> MatchMessage:
        return await self.engine.post_message(match_id, sender_id, message_hash)

    def list_match_messages(self, match_id: str) -> List[MatchMessage]:
        return self.engine.list_messages(match_id)

    # ── Aura ──

    def get_aura_balance(self, user_id: str) -> int:
        return self.ledger.balance(user_id)

    def list_aura_history(self, user_id: str) -> List[AuraTransaction]:
        self.store.get(user_id)
        return self.ledger.history(user_id)

    # ── Stats ──

    def get_stats(self) -> DatingStats:
        matches = self.engine.all_matches()
        scores = [m.compatibility_score for m in matches]
        return DatingStats(
            total_profiles=len(self.store),
            active_profiles=len(self.store.active()),
            total_matches=len(matches),
            unlocked_chats=sum(1 for m in matches if m.chat_unlocked),
            average_compatibility_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
        )
