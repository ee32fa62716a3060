"""
DownloadWorkflow: token -> one-time byte stream.

The token is consumed before the object is opened. A missing object after a
successful redeem is a catalog/storage drift: reported as StorageInconsistency,
logged as an alert, and the token stays consumed.
"""
from __future__ import annotations

import logging
import mimetypes
import posixpath

from fileclaim.claims.errors import ClaimError, StorageInconsistency, UpstreamUnavailable
from fileclaim.claims.ledger import TokenLedger
from fileclaim.claims.models import Delivery, TokenRecord
from fileclaim.core.logging import token_prefix
from fileclaim.services.telegram.client import Notifier
from fileclaim.storage.base import ObjectStore
from fileclaim.storage.kv import KeyValueStoreError
from fileclaim.utils.metrics import downloads_total

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def delivery_filename(record: TokenRecord) -> str:
    """<item_id><extension of the stored path>, e.g. ebook_demo.pdf."""
    ext = posixpath.splitext(record.path)[1].lower()
    safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in record.item_id)
    return f"{safe_id}{ext}"


def content_type_for(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or DEFAULT_CONTENT_TYPE


class DownloadWorkflow:
    def __init__(self, ledger: TokenLedger, objects: ObjectStore, notifier: Notifier) -> None:
        self.ledger = ledger
        self.objects = objects
        self.notifier = notifier

    def inspect(self, token: str) -> TokenRecord:
        """Gate page check. Does not consume the token."""
        try:
            return self.ledger.peek(token)
        except KeyValueStoreError as e:
            logger.error("ledger_unavailable", extra={"token_prefix": token_prefix(token), "error": str(e)})
            raise UpstreamUnavailable(str(e)) from e

    def serve(self, token: str) -> Delivery:
        try:
            delivery = self._serve(token)
        except ClaimError as e:
            downloads_total.labels(outcome=e.code).inc()
            raise
        downloads_total.labels(outcome="served").inc()
        return delivery

    def _serve(self, token: str) -> Delivery:
        try:
            record = self.ledger.redeem(token)
        except KeyValueStoreError as e:
            logger.error("ledger_unavailable", extra={"token_prefix": token_prefix(token), "error": str(e)})
            raise UpstreamUnavailable(str(e)) from e

        stored = self.objects.open(record.path)
        if stored is None:
            logger.error(
                "storage_inconsistency",
                extra={
                    "path": record.path,
                    "item_id": record.item_id,
                    "transaction_ref": record.transaction_ref,
                    "token_prefix": token_prefix(token),
                },
            )
            raise StorageInconsistency(record.path)

        self.notifier.notify(f"⬇️ Download served\nE-Book: {record.item_id}")
        return Delivery(
            item_id=record.item_id,
            filename=delivery_filename(record),
            content_type=content_type_for(record.path),
            size=stored.size,
            chunks=stored.chunks,
        )
