"""
ClaimWorkflow: transaction reference -> one-time download link.

    validate ref -> live claim? (replay) -> verify payment (optional)
    -> pick catalog item -> mint -> notify -> link

Nothing is written to the ledger before mint, so any earlier failure leaves the
transaction free to be claimed again.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable

from fileclaim.claims.catalog import CatalogSelector
from fileclaim.claims.errors import (
    AlreadyClaimed,
    ClaimError,
    InvalidRequest,
    NoItemAvailable,
    PaymentNotConfirmed,
    UpstreamUnavailable,
)
from fileclaim.claims.ledger import TokenLedger
from fileclaim.claims.models import ClaimRecord, ClaimResult
from fileclaim.services.payments.models import PaymentOrder
from fileclaim.services.payments.paypal import (
    PaymentUpstreamError,
    PaymentVerifier,
    PaymentVerifierError,
    normalize_order_id,
)
from fileclaim.services.telegram.client import Notifier
from fileclaim.storage.kv import KeyValueStoreError
from fileclaim.utils.metrics import claims_total

logger = logging.getLogger(__name__)

STATUS_APPROVED = "APPROVED"
STATUS_COMPLETED = "COMPLETED"


def build_download_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/download/{token}"


class ClaimWorkflow:
    def __init__(
        self,
        ledger: TokenLedger,
        catalog: CatalogSelector,
        notifier: Notifier,
        *,
        verifier: PaymentVerifier | None = None,
        token_ttl_seconds: int = 3600,
        purchase_marker_ttl_seconds: int = 30 * 24 * 3600,
        min_amount: Decimal = Decimal("10.00"),
        currency: str = "EUR",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger
        self.catalog = catalog
        self.notifier = notifier
        self.verifier = verifier
        self.token_ttl_seconds = token_ttl_seconds
        self.purchase_marker_ttl_seconds = purchase_marker_ttl_seconds
        self.min_amount = min_amount
        self.currency = currency
        self.clock = clock

    def claim(self, transaction_ref: str | None, base_url: str, requested_item_id: str | None = None) -> ClaimResult:
        try:
            result = self._claim((transaction_ref or "").strip(), base_url, requested_item_id)
        except ClaimError as e:
            claims_total.labels(outcome=e.code).inc()
            raise
        claims_total.labels(outcome="replayed" if result.replayed else "minted").inc()
        return result

    def _claim(self, ref: str, base_url: str, requested_item_id: str | None) -> ClaimResult:
        if not ref:
            raise InvalidRequest()
        if self.verifier is not None:
            # ledger keys use the canonical order id, so ORDER1 and order1 share one claim
            order_id = normalize_order_id(ref)
            if order_id is None:
                logger.info("claim_ref_rejected", extra={"transaction_ref": ref[:64]})
                raise InvalidRequest(f"not an order id: {ref[:64]!r}")
            ref = order_id

        try:
            existing = self.ledger.lookup_claim(ref)
        except KeyValueStoreError as e:
            logger.error("ledger_unavailable", extra={"transaction_ref": ref, "error": str(e)})
            raise UpstreamUnavailable(str(e)) from e
        if existing is not None:
            logger.info("claim_replayed", extra={"transaction_ref": ref, "item_id": existing.item_id})
            return self._result(existing, base_url, replayed=True)

        order: PaymentOrder | None = None
        if self.verifier is not None:
            self._ensure_purchase_unspent(ref)
            order = self._verify_payment(self.verifier, ref)

        loaded = self.catalog.load()
        item = self.catalog.pick(loaded.items, order.custom_id if order else None, requested_item_id)
        if item is None:
            logger.error("catalog_empty", extra={"transaction_ref": ref, "source": loaded.source})
            raise NoItemAvailable()

        try:
            claim = self.ledger.mint(item.path, item.id, ref, self.token_ttl_seconds)
        except KeyValueStoreError as e:
            logger.error("mint_failed", extra={"transaction_ref": ref, "error": str(e)})
            raise UpstreamUnavailable(str(e)) from e

        if order is not None:
            try:
                self.ledger.mark_purchase(ref, self.purchase_marker_ttl_seconds)
            except KeyValueStoreError as e:
                logger.warning("purchase_marker_write_failed", extra={"transaction_ref": ref, "error": str(e)})

        ttl_minutes = self.token_ttl_seconds // 60
        self.notifier.notify(f"📦 Claim OK\nTX: {ref}\nE-Book: {claim.item_id}\nLink gültig: {ttl_minutes} Min.")
        return self._result(claim, base_url, replayed=False)

    def _result(self, claim: ClaimRecord, base_url: str, replayed: bool) -> ClaimResult:
        return ClaimResult(
            download_url=build_download_url(base_url, claim.token),
            item_id=claim.item_id,
            ttl_remaining=claim.ttl_remaining(self.clock()),
            token=claim.token,
            replayed=replayed,
        )

    def _ensure_purchase_unspent(self, ref: str) -> None:
        """A paid purchase whose download window already ended gets 409, not a new token."""
        try:
            spent = self.ledger.purchase_spent(ref)
        except KeyValueStoreError as e:
            raise UpstreamUnavailable(str(e)) from e
        if spent:
            logger.info("claim_purchase_already_spent", extra={"transaction_ref": ref})
            raise AlreadyClaimed()

    def _verify_payment(self, verifier: PaymentVerifier, ref: str) -> PaymentOrder:
        """
        Fail closed: any verifier error or a final status other than COMPLETED
        rejects the claim. Amount is checked before capture so an underpaid
        APPROVED order is never captured, and again on the captured amount.
        """
        try:
            order = self._matching(ref, verifier.get_order(ref))
            if order.status == STATUS_APPROVED:
                self._check_amount(ref, order)
                order = self._matching(ref, verifier.capture_order(ref))
        except PaymentUpstreamError as e:
            logger.warning("payment_upstream_unavailable", extra={"order_id": ref, "error": str(e)})
            raise UpstreamUnavailable(str(e)) from e
        except PaymentVerifierError as e:
            logger.warning(
                "payment_verification_failed",
                extra={"order_id": ref, "status_code": e.status_code, "error": str(e)},
            )
            raise PaymentNotConfirmed("verifier_error", str(e)) from e

        if order.status != STATUS_COMPLETED:
            logger.info("payment_not_completed", extra={"order_id": ref, "status": order.status})
            raise PaymentNotConfirmed("status_not_completed", order.status)
        self._check_amount(ref, order)
        return order

    def _check_amount(self, ref: str, order: PaymentOrder) -> None:
        currency = (order.currency or "").upper()
        if order.amount is None or currency != self.currency or order.amount < self.min_amount:
            logger.warning(
                "payment_amount_rejected",
                extra={"order_id": ref, "reason": f"{order.amount} {currency}"},
            )
            raise PaymentNotConfirmed("amount_rejected", f"{order.amount} {currency}")

    def _matching(self, ref: str, order: PaymentOrder) -> PaymentOrder:
        """The provider must answer for the order we asked about, nothing else."""
        if order.id.upper() != ref:
            logger.warning("payment_order_mismatch", extra={"order_id": ref, "reason": order.id})
            raise PaymentNotConfirmed("order_mismatch", order.id)
        return order
