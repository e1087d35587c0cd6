"""
AuditChain — tamper-evident append-only record chain.

Stands in for the external ledger collaborator: profile commitments,
matches and Aura transactions submitted through a ``LedgerGateway`` end
up here as hash-linked entries with a running Merkle root.

Security Invariants:
    - No private attribute is ever submitted, only commitments and ids.
    - Each entry's hash includes the previous entry's hash (chain).
    - The Merkle root over all entry hashes detects any rewrite.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from zklove.core.errors import GatewaySubmissionError
from zklove.infrastructure.ledger.merkle import GENESIS_HASH, MerkleTree, sha256_hex

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChainEntry:
    index: int
    timestamp: str  # ISO-8601 UTC
    record_type: str
    subject: str
    payload: Dict[str, Any]
    previous_hash: str
    entry_hash: str
    merkle_root: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "recordType": self.record_type,
            "subject": self.subject,
            "payload": self.payload,
            "previousHash": self.previous_hash,
            "entryHash": self.entry_hash,
            "merkleRoot": self.merkle_root,
        }


class IntegrityReport(BaseModel):
    """Result of a full chain integrity verification."""
    is_valid: bool = True
    chain_length: int = 0
    merkle_root: str = ""
    first_invalid_index: int = -1
    error_message: str = ""
    verified_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


@dataclass(frozen=True)
class SubmissionReceipt:
    record_type: str
    entry_index: int
    entry_hash: str
    merkle_root: str


def compute_entry_hash(
    index: int,
    timestamp: str,
    record_type: str,
    subject: str,
    payload: Dict[str, Any],
    previous_hash: str,
) -> str:
    """SHA-256 over the canonical JSON of every entry field."""
    canonical = json.dumps(
        {
            "index": index,
            "timestamp": timestamp,
            "record_type": record_type,
            "subject": subject,
            "payload": payload,
            "previous_hash": previous_hash,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return sha256_hex(canonical)


# ═══════════════════════════════════════════════════════════════════════════════
# AUDIT CHAIN
# ═══════════════════════════════════════════════════════════════════════════════

class AuditChain:
    def __init__(self) -> None:
        self._chain: List[ChainEntry] = []
        self._merkle_tree = MerkleTree()

    @property
    def chain_length(self) -> int:
        return len(self._chain)

    @property
    def merkle_root(self) -> str:
        return self._merkle_tree.root

    def entries(self, record_type: Optional[str] = None) -> List[ChainEntry]:
        if record_type is None:
            return list(self._chain)
        return [e for e in self._chain if e.record_type == record_type]

    def append(self, record_type: str, subject: str, payload: Dict[str, Any]) -> ChainEntry:
        index = len(self._chain)
        previous_hash = self._chain[-1].entry_hash if self._chain else GENESIS_HASH
        timestamp = datetime.now(timezone.utc).isoformat()

        entry_hash = compute_entry_hash(index, timestamp, record_type, subject, payload, previous_hash)
        merkle_root = self._merkle_tree.add_leaf(entry_hash)

        entry = ChainEntry(
            index=index,
            timestamp=timestamp,
            record_type=record_type,
            subject=subject,
            payload=payload,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            merkle_root=merkle_root,
        )
        self._chain.append(entry)
        logger.debug(
            f"[CHAIN] Entry #{index} ({record_type}) committed — hash={entry_hash[:16]}..."
        )
        return entry

    def verify_integrity(self) -> IntegrityReport:
        """Recompute every entry hash, the chain linkage and the Merkle root."""
        entry_hashes: List[str] = []
        for i, entry in enumerate(self._chain):
            expected_prev = GENESIS_HASH if i == 0 else self._chain[i - 1].entry_hash
            if entry.previous_hash != expected_prev:
                return self._invalid(i, f"Chain break at index {i}: previous_hash mismatch")

            recomputed = compute_entry_hash(
                entry.index,
                entry.timestamp,
                entry.record_type,
                entry.subject,
                entry.payload,
                entry.previous_hash,
            )
            if recomputed != entry.entry_hash:
                return self._invalid(i, f"Hash mismatch at index {i}: entry tampered")
            entry_hashes.append(entry.entry_hash)

        if not self._merkle_tree.verify(entry_hashes):
            return self._invalid(-1, "Merkle root mismatch: tree tampered")

        return IntegrityReport(
            is_valid=True,
            chain_length=len(self._chain),
            merkle_root=self._merkle_tree.root,
        )

    def _invalid(self, index: int, message: str) -> IntegrityReport:
        return IntegrityReport(
            is_valid=False,
            chain_length=len(self._chain),
            merkle_root=self._merkle_tree.root,
            first_invalid_index=index,
            error_message=message,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# LEDGER GATEWAY (external collaborator contract)
# ═══════════════════════════════════════════════════════════════════════════════

class LedgerGateway(Protocol):
    """Accepts public records for persistence and event emission."""

    async def submit_profile(self, user_id: str, commitments: Dict[str, Any]) -> SubmissionReceipt:
        ...

    async def submit_match(self, match: Dict[str, Any]) -> SubmissionReceipt:
        ...

    async def submit_aura_transaction(self, transaction: Dict[str, Any]) -> SubmissionReceipt:
        ...

    async def submit_message(self, message: Dict[str, Any]) -> SubmissionReceipt:
        ...


class AuditChainGateway:
    """Default LedgerGateway writing every submission to an AuditChain."""

    def __init__(self, chain: Optional[AuditChain] = None) -> None:
        self.chain = chain or AuditChain()

    async def submit_profile(self, user_id: str, commitments: Dict[str, Any]) -> SubmissionReceipt:
        return self._submit("profile", user_id, commitments)

    async def submit_match(self, match: Dict[str, Any]) -> SubmissionReceipt:
        return self._submit("match", match["matchId"], match)

    async def submit_aura_transaction(self, transaction: Dict[str, Any]) -> SubmissionReceipt:
        return self._submit("aura_transaction", transaction["user"], transaction)

    async def submit_message(self, message: Dict[str, Any]) -> SubmissionReceipt:
        return self._submit("message", message["matchId"], message)

    def _submit(self, record_type: str, subject: str, payload: Dict[str, Any]) -> SubmissionReceipt:
        try:
            entry = self.chain.append(record_type, subject, payload)
        except (TypeError, ValueError) as exc:
            raise GatewaySubmissionError(f"{record_type} record rejected: {exc}")
        return SubmissionReceipt(
            record_type=record_type,
            entry_index=entry.index,
            entry_hash=entry.entry_hash,
            merkle_root=entry.merkle_root,
        )
