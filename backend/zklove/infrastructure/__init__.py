"""
zklove Infrastructure Module.

Shared mutable stores and collaborators of the matching core:
    - AuraLedger: Append-only, signed, hash-chained Aura accounting
    - NullifierRegistry: One active profile per identity, swipe dedup
    - AuditChainGateway: Default ledger-submission collaborator
    - EventBus: Queue-based event channel
"""

from zklove.infrastructure.events import DomainEvent, EventBus, EventKind
from zklove.infrastructure.ledger.audit_chain import (
    AuditChain,
    AuditChainGateway,
    IntegrityReport,
    LedgerGateway,
    SubmissionReceipt,
)
from zklove.infrastructure.ledger.aura_ledger import AuraLedger, AuraTransaction
from zklove.infrastructure.registry.nullifier_registry import (
    NullifierRegistry,
    RegistrationOutcome,
)
from zklove.infrastructure.store import ProfileRecord, ProfileStore

__all__ = [
    "DomainEvent",
    "EventBus",
    "EventKind",
    "AuditChain",
    "AuditChainGateway",
    "IntegrityReport",
    "LedgerGateway",
    "SubmissionReceipt",
    "AuraLedger",
    "AuraTransaction",
    "NullifierRegistry",
    "RegistrationOutcome",
    "ProfileRecord",
    "ProfileStore",
]
