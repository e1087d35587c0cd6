"""
Aura Ledger — append-only, per-user linearizable Aura accounting.

Every credit and debit is an AuraTransaction appended to a single
hash-chained, HMAC-signed log with a running Merkle root. The cached
``aura_balance`` on each profile record is updated in the same critical
section and must always equal the sum of that user's transactions.

Invariants:
    - balance(user) == sum(tx.amount for tx in history(user))
    - balance(user) >= 0 after every write
    - A committed transaction is never removed. Mistakes are remediated
      with compensating entries (match_reversal, unlock_refund).

A replay divergence halts every further write for the affected user,
logs at CRITICAL and publishes an integrity_alert event.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from zklove.core.errors import InsufficientAuraError, LedgerIntegrityError
from zklove.infrastructure.events import EventBus, EventKind
from zklove.infrastructure.ledger.audit_chain import IntegrityReport
from zklove.infrastructure.ledger.merkle import GENESIS_HASH, MerkleTree, sha256_hex
from zklove.infrastructure.store import ProfileStore, utc_now
from zklove.schemas.dating import AuraReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuraTransaction:
    transaction_id: str
    user_id: str
    amount: int  # positive = earned, negative = spent
    reason: AuraReason
    timestamp: str
    related_match_id: Optional[str]
    index: int
    previous_hash: str
    entry_hash: str
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.transaction_id,
            "user": self.user_id,
            "amount": self.amount,
            "reason": self.reason.value,
            "timestamp": self.timestamp,
            "relatedMatchId": self.related_match_id,
            "index": self.index,
            "previousHash": self.previous_hash,
            "entryHash": self.entry_hash,
            "signature": self.signature,
        }


def _transaction_hash(
    transaction_id: str,
    user_id: str,
    amount: int,
    reason: str,
    timestamp: str,
    related_match_id: Optional[str],
    index: int,
    previous_hash: str,
) -> str:
    canonical = json.dumps(
        {
            "id": transaction_id,
            "user": user_id,
            "amount": amount,
            "reason": reason,
            "timestamp": timestamp,
            "match": related_match_id,
            "index": index,
            "previous_hash": previous_hash,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return sha256_hex(canonical)


class AuraLedger:
    """
    Usage:
        ledger = AuraLedger(store, signing_key="...", event_bus=bus)
        await ledger.credit("alice", 100, AuraReason.PROFILE_CREATED)
        await ledger.debit("alice", 20, AuraReason.UNLOCK_BASIC, match_id)
    """

    def __init__(
        self,
        store: ProfileStore,
        signing_key: str,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._store = store
        self._key = signing_key.encode("utf-8")
        self._events = event_bus
        self._chain: List[AuraTransaction] = []
        self._by_user: Dict[str, List[AuraTransaction]] = {}
        self._merkle_tree = MerkleTree()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._halted: Set[str] = set()

    # ── Public API ──

    async def credit(
        self,
        user_id: str,
        amount: int,
        reason: AuraReason,
        related_match_id: Optional[str] = None,
    ) -> AuraTransaction:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        return await self._write(user_id, amount, reason, related_match_id)

    async def debit(
        self,
        user_id: str,
        amount: int,
        reason: AuraReason,
        related_match_id: Optional[str] = None,
    ) -> AuraTransaction:
        """Raises InsufficientAuraError when the balance is below ``amount``."""
        if amount <= 0:
            raise ValueError("debit amount must be positive")
        return await self._write(user_id, -amount, reason, related_match_id)

    def balance(self, user_id: str) -> int:
        return self._store.get(user_id).aura_balance

    def history(self, user_id: str) -> List[AuraTransaction]:
        return list(self._by_user.get(user_id, []))

    def replay_balance(self, user_id: str) -> int:
        return sum(tx.amount for tx in self._by_user.get(user_id, []))

    def is_halted(self, user_id: str) -> bool:
        return user_id in self._halted

    @property
    def merkle_root(self) -> str:
        return self._merkle_tree.root

    @property
    def transaction_count(self) -> int:
        return len(self._chain)

    def verify_integrity(self) -> IntegrityReport:
        """Re-check chain links, entry hashes, signatures, the Merkle root and every replay."""
        hashes: List[str] = []
        for i, tx in enumerate(self._chain):
            expected_prev = GENESIS_HASH if i == 0 else self._chain[i - 1].entry_hash
            if tx.previous_hash != expected_prev or tx.index != i:
                return self._invalid(i, f"Chain break at index {i}")
            recomputed = _transaction_hash(
                tx.transaction_id,
                tx.user_id,
                tx.amount,
                tx.reason.value,
                tx.timestamp,
                tx.related_match_id,
                tx.index,
                tx.previous_hash,
            )
            if recomputed != tx.entry_hash:
                return self._invalid(i, f"Hash mismatch at index {i}: transaction tampered")
            if not hmac.compare_digest(tx.signature, self._sign(tx.entry_hash)):
                return self._invalid(i, f"Signature mismatch at index {i}")
            hashes.append(tx.entry_hash)

        if not self._merkle_tree.verify(hashes):
            return self._invalid(-1, "Merkle root mismatch: ledger tampered")

        for user_id in self._by_user:
            record = self._store.find(user_id)
            if record is not None and record.aura_balance != self.replay_balance(user_id):
                return self._invalid(-1, f"Replay divergence for {user_id}")

        return IntegrityReport(
            is_valid=True,
            chain_length=len(self._chain),
            merkle_root=self._merkle_tree.root,
        )

    # ── Internals ──

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def _write(
        self,
        user_id: str,
        amount: int,
        reason: AuraReason,
        related_match_id: Optional[str],
    ) -> AuraTransaction:
        async with self._lock_for(user_id):
            if user_id in self._halted:
                raise LedgerIntegrityError(user_id, f"writes for {user_id} are halted")

            record = self._store.get(user_id)
            self._check_replay(user_id, record.aura_balance)

            if record.aura_balance + amount < 0:
                logger.info(
                    f"[AURA] Debit of {-amount} refused for {user_id} — balance {record.aura_balance}"
                )
                raise InsufficientAuraError(user_id, -amount, record.aura_balance)

            tx = self._append(user_id, amount, reason, related_match_id)
            record.aura_balance += amount
            record.touch()
            self._check_replay(user_id, record.aura_balance)
            balance = record.aura_balance

        logger.info(
            f"[AURA] {user_id} {amount:+d} ({reason.value}) — balance={balance}"
        )
        if self._events is not None:
            kind = EventKind.AURA_EARNED if amount > 0 else EventKind.AURA_SPENT
            self._events.publish(kind, transaction=tx.to_dict(), balance=balance)
        return tx

    def _append(
        self,
        user_id: str,
        amount: int,
        reason: AuraReason,
        related_match_id: Optional[str],
    ) -> AuraTransaction:
        index = len(self._chain)
        previous_hash = self._chain[-1].entry_hash if self._chain else GENESIS_HASH
        transaction_id = uuid.uuid4().hex
        timestamp = utc_now()
        entry_hash = _transaction_hash(
            transaction_id, user_id, amount, reason.value, timestamp,
            related_match_id, index, previous_hash,
        )
        tx = AuraTransaction(
            transaction_id=transaction_id,
            user_id=user_id,
            amount=amount,
            reason=reason,
            timestamp=timestamp,
            related_match_id=related_match_id,
            index=index,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            signature=self._sign(entry_hash),
        )
        self._chain.append(tx)
        self._by_user.setdefault(user_id, []).append(tx)
        self._merkle_tree.add_leaf(entry_hash)
        return tx

    def _check_replay(self, user_id: str, cached: int) -> None:
        replayed = self.replay_balance(user_id)
        if replayed == cached and cached >= 0:
            return
        self._halted.add(user_id)
        logger.critical(
            f"[AURA] Integrity violation for {user_id} — cached={cached} replayed={replayed}. "
            f"Writes halted."
        )
        if self._events is not None:
            self._events.publish(
                EventKind.INTEGRITY_ALERT, user=user_id, cached=cached, replayed=replayed,
            )
        raise LedgerIntegrityError(
            user_id, f"balance {cached} diverges from replayed ledger sum {replayed}"
        )

    def _sign(self, data: str) -> str:
        """HMAC-SHA256 over the entry hash with the ledger signing key."""
        sig_bytes = hmac.new(self._key, data.encode("utf-8"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(sig_bytes).decode("utf-8").rstrip("=")

    def _invalid(self, index: int, message: str) -> IntegrityReport:
        logger.critical(f"[AURA] Ledger integrity check failed — {message}")
        return IntegrityReport(
            is_valid=False,
            chain_length=len(self._chain),
            merkle_root=self._merkle_tree.root,
            first_invalid_index=index,
            error_message=message,
        )
