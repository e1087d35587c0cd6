"""
Shared fixtures.

Committing a profile costs a few hundred 2048-bit exponentiations, so the
pure-crypto fixtures are session scoped. Service fixtures are rebuilt for
every test.
"""

import asyncio
from typing import Optional

import pytest

from zklove.core.config import Settings
from zklove.core.crypto.commitment import CommitmentGenerator, CommitmentSalts, derive_nullifier
from zklove.core.crypto.compatibility import CompatibilityProver, CompatibilityVerifier
from zklove.core.errors import GatewaySubmissionError
from zklove.infrastructure.ledger.audit_chain import AuditChainGateway
from zklove.schemas.dating import ProfileAttributes
from zklove.services.dating_service import ZKDatingService


def make_attributes(
    name: str,
    city: str,
    hobbies,
    age: int = 27,
    min_age: int = 18,
    max_age: int = 35,
    **extra,
) -> ProfileAttributes:
    return ProfileAttributes(
        name=name,
        bio=f"{name}'s bio",
        city=city,
        hobbies=list(hobbies),
        age=age,
        min_age=min_age,
        max_age=max_age,
        **extra,
    )


class FailingGateway(AuditChainGateway):
    """
    Rejects the record types listed in ``fail_on``. Submissions of the types
    in ``stall_on`` block until cancelled; ``stalled`` is set when one does.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_on = set()
        self.stall_on = set()
        self.stalled = asyncio.Event()

    async def submit_match(self, match):
        await self._stall("match")
        return await super().submit_match(match)

    async def submit_aura_transaction(self, transaction):
        await self._stall("aura_transaction")
        return await super().submit_aura_transaction(transaction)

    async def _stall(self, record_type):
        if record_type in self.stall_on:
            self.stalled.set()
            await asyncio.Event().wait()

    def _submit(self, record_type, subject, payload):
        if record_type in self.fail_on:
            raise GatewaySubmissionError(f"{record_type} rejected by test gateway")
        return super()._submit(record_type, subject, payload)


# ── Pure crypto (session scoped) ──

@pytest.fixture(scope="session")
def generator():
    return CommitmentGenerator()


@pytest.fixture(scope="session")
def prover():
    return CompatibilityProver()


@pytest.fixture(scope="session")
def verifier():
    return CompatibilityVerifier()


@pytest.fixture(scope="session")
def alice_result(generator):
    attrs = make_attributes("Alice", "SF", ["music", "coding"], age=27)
    return generator.commit(attrs, CommitmentSalts.generate(), derive_nullifier("alice-secret"))


@pytest.fixture(scope="session")
def bob_result(generator):
    attrs = make_attributes("Bob", "sf ", ["coding", "travel"], age=29)
    return generator.commit(attrs, CommitmentSalts.generate(), derive_nullifier("bob-secret"))


@pytest.fixture(scope="session")
def carol_result(generator):
    attrs = make_attributes("Carol", "NYC", ["coding", "music"], age=26)
    return generator.commit(attrs, CommitmentSalts.generate(), derive_nullifier("carol-secret"))


@pytest.fixture(scope="session")
def dave_result(generator):
    attrs = make_attributes("Dave", "SF", ["fitness", "yoga"], age=31)
    return generator.commit(attrs, CommitmentSalts.generate(), derive_nullifier("dave-secret"))


@pytest.fixture(scope="session")
def alice_bob_proof(prover, alice_result, bob_result):
    return prover.prove(
        alice_result.opening,
        alice_result.commitments,
        bob_result.opening,
        bob_result.commitments,
        swiper_id="alice",
        target_id="bob",
    )


# ── Services ──

@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def gateway():
    return FailingGateway()


@pytest.fixture
def service(settings, gateway):
    return ZKDatingService.from_settings(settings, gateway=gateway)


async def onboard(
    service: ZKDatingService,
    user_id: str,
    city: str,
    hobbies,
    age: int = 27,
    secret: Optional[str] = None,
    **extra,
):
    attrs = make_attributes(user_id.capitalize(), city, hobbies, age=age, **extra)
    return await service.create_profile(user_id, attrs, identity_secret=secret or f"{user_id}-secret")


async def prove(service: ZKDatingService, swiper, target):
    return await service.prove_compatibility(
        swiper.user_id, swiper.opening, target.user_id, target.opening
    )
