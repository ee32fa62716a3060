"""
TokenLedger: one-time download tokens on top of a key-value store.

Token states: MINTED -> CONSUMED (key deleted on redeem) or MINTED -> EXPIRED
(store TTL). A token key that exists and whose expires_at is in the future is
valid; there is no "used" flag.

Keys:
    token:<token>        TokenRecord, TTL = token ttl
    claim:<ref>          ClaimRecord, TTL = token ttl (same as its token)
    purchase:<ref>       marker for a paid purchase that already produced a token

Single use: redeem() goes through KeyValueStore.take(). On Redis that is GETDEL
and exactly one concurrent caller wins. On a store without atomic take the
ledger reads, then deletes; two redemptions landing between those two calls
both succeed. This window is accepted for such stores and covered by tests.
"""
from __future__ import annotations

import logging
import secrets
import time
from typing import Callable

from pydantic import ValidationError

from fileclaim.claims.errors import TokenInvalid
from fileclaim.claims.models import ClaimRecord, TokenRecord
from fileclaim.core.logging import token_prefix
from fileclaim.storage.kv import KeyValueStore, KeyValueStoreError

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "token:"
CLAIM_PREFIX = "claim:"
PURCHASE_PREFIX = "purchase:"

TOKEN_BYTES = 32  # 256 bits


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class TokenLedger:
    def __init__(
        self,
        kv: KeyValueStore,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = new_token,
    ) -> None:
        self.kv = kv
        self.clock = clock
        self.token_factory = token_factory

    @staticmethod
    def token_key(token: str) -> str:
        return f"{TOKEN_PREFIX}{token}"

    @staticmethod
    def claim_key(transaction_ref: str) -> str:
        return f"{CLAIM_PREFIX}{transaction_ref}"

    @staticmethod
    def purchase_key(transaction_ref: str) -> str:
        return f"{PURCHASE_PREFIX}{transaction_ref}"

    # ------------------------------------------------------------------
    # Mint
    # ------------------------------------------------------------------

    def mint(self, path: str, item_id: str, transaction_ref: str, ttl_seconds: int) -> ClaimRecord:
        """
        Write a TokenRecord, then the ClaimRecord for transaction_ref (set-if-absent,
        same TTL). Returns the claim that is now live for the transaction: ours, or
        the one a concurrent claim wrote first (our token is then discarded).
        """
        now = self.clock()
        expires_at = now + ttl_seconds
        token = self.token_factory()
        record = TokenRecord(
            token=token,
            path=path,
            item_id=item_id,
            created_at=now,
            expires_at=expires_at,
            transaction_ref=transaction_ref,
        )
        self.kv.put(self.token_key(token), record.model_dump_json(), ttl_seconds)

        claim = ClaimRecord(
            transaction_ref=transaction_ref,
            token=token,
            item_id=item_id,
            issued_at=now,
            expires_at=expires_at,
        )
        try:
            written = self.kv.put_if_absent(self.claim_key(transaction_ref), claim.model_dump_json(), ttl_seconds)
        except KeyValueStoreError as e:
            # Token stays valid; a retry of this claim may mint a second one.
            logger.warning(
                "claim_record_write_failed",
                extra={"transaction_ref": transaction_ref, "token_prefix": token_prefix(token), "error": str(e)},
            )
            return claim

        if written:
            logger.info(
                "token_minted",
                extra={"transaction_ref": transaction_ref, "item_id": item_id, "token_prefix": token_prefix(token)},
            )
            return claim

        existing = self.lookup_claim(transaction_ref)
        if existing is None:
            # The competing claim vanished between our write and read; keep ours.
            self.kv.put(self.claim_key(transaction_ref), claim.model_dump_json(), ttl_seconds)
            return claim
        self.kv.delete(self.token_key(token))
        logger.info(
            "claim_race_lost",
            extra={"transaction_ref": transaction_ref, "token_prefix": token_prefix(existing.token)},
        )
        return existing

    # ------------------------------------------------------------------
    # Claim replay
    # ------------------------------------------------------------------

    def lookup_claim(self, transaction_ref: str) -> ClaimRecord | None:
        raw = self.kv.get(self.claim_key(transaction_ref))
        if raw is None:
            return None
        try:
            claim = ClaimRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("claim_record_unreadable", extra={"transaction_ref": transaction_ref})
            return None
        if self.clock() >= claim.expires_at:
            return None
        return claim

    def mark_purchase(self, transaction_ref: str, ttl_seconds: int) -> None:
        self.kv.put(self.purchase_key(transaction_ref), str(int(self.clock())), ttl_seconds)

    def purchase_spent(self, transaction_ref: str) -> bool:
        return self.kv.get(self.purchase_key(transaction_ref)) is not None

    # ------------------------------------------------------------------
    # Validate / redeem
    # ------------------------------------------------------------------

    def peek(self, token: str) -> TokenRecord:
        """Validate without consuming (gate page)."""
        if not token:
            raise TokenInvalid()
        return self._valid_record(token, self.kv.get(self.token_key(token)))

    def redeem(self, token: str) -> TokenRecord:
        """
        Consume the token. After this returns, the token is gone from the ledger
        whether or not the caller manages to deliver the file.
        """
        if not token:
            raise TokenInvalid()
        key = self.token_key(token)
        if self.kv.atomic_take:
            raw = self.kv.take(key)
        else:
            raw = self.kv.get(key)
            if raw is not None:
                self.kv.delete(key)
        record = self._valid_record(token, raw)
        logger.info(
            "token_redeemed",
            extra={"transaction_ref": record.transaction_ref, "item_id": record.item_id, "token_prefix": token_prefix(token)},
        )
        return record

    def _valid_record(self, token: str, raw: str | None) -> TokenRecord:
        if raw is None:
            raise TokenInvalid()
        try:
            record = TokenRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("token_record_unreadable", extra={"token_prefix": token_prefix(token)})
            raise TokenInvalid() from None
        if record.token != token or self.clock() >= record.expires_at:
            raise TokenInvalid()
        return record
