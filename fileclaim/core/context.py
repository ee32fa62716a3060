"""
ServiceContext: every collaborator a request needs, built once per app from
Settings and passed explicitly (app.state.context -> Depends). No module-level
clients or catalogs.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

import redis

from fileclaim.claims.catalog import CatalogSelector
from fileclaim.claims.claim import ClaimWorkflow
from fileclaim.claims.download import DownloadWorkflow
from fileclaim.claims.ledger import TokenLedger
from fileclaim.core.config import Settings
from fileclaim.services.circuit_breaker import build_circuit_breaker
from fileclaim.services.payments.paypal import PaymentRejectedError, PaymentVerifier, PayPalVerifier
from fileclaim.services.telegram.client import Notifier, TelegramNotifier
from fileclaim.storage.base import ObjectStore
from fileclaim.storage.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from fileclaim.storage.local import LocalObjectStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: Settings
    kv: KeyValueStore
    objects: ObjectStore
    notifier: Notifier = field(default_factory=Notifier)
    verifier: PaymentVerifier | None = None
    clock: Callable[[], float] = time.time
    rng: random.Random = field(default_factory=random.SystemRandom)

    def ledger(self) -> TokenLedger:
        return TokenLedger(self.kv, clock=self.clock)

    def catalog(self) -> CatalogSelector:
        return CatalogSelector(
            self.kv,
            kv_key=self.settings.catalog_kv_key,
            catalog_file=self.settings.catalog_file or None,
            rng=self.rng,
        )

    def claim_workflow(self, notifier: Notifier | None = None) -> ClaimWorkflow:
        return ClaimWorkflow(
            self.ledger(),
            self.catalog(),
            notifier or self.notifier,
            verifier=self.verifier,
            token_ttl_seconds=self.settings.token_ttl_seconds,
            purchase_marker_ttl_seconds=self.settings.purchase_marker_ttl_seconds,
            min_amount=self.settings.min_amount,
            currency=self.settings.currency,
            clock=self.clock,
        )

    def download_workflow(self, notifier: Notifier | None = None) -> DownloadWorkflow:
        return DownloadWorkflow(self.ledger(), self.objects, notifier or self.notifier)

    def close(self) -> None:
        for resource in (self.notifier, self.verifier):
            close = getattr(resource, "close", None)
            if close is not None:
                close()


def build_context(settings: Settings) -> ServiceContext:
    redis_client: redis.Redis | None = None
    if settings.kv_backend == "redis":
        kv_store = RedisKeyValueStore.from_url(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
        redis_client = kv_store.client
        kv: KeyValueStore = kv_store
    else:
        logger.warning("kv_backend_memory", extra={"status": "tokens do not survive a restart"})
        kv = InMemoryKeyValueStore()

    verifier: PaymentVerifier | None = None
    if settings.payment_provider == "paypal":
        verifier = PayPalVerifier(
            settings.paypal_client_id,
            settings.paypal_client_secret,
            settings.paypal_api_base,
            timeout=settings.http_client_timeout,
            breaker=build_circuit_breaker("paypal", settings, redis_client, exclude=[PaymentRejectedError]),
        )

    notifier: Notifier = Notifier()
    if settings.telegram_enabled:
        notifier = TelegramNotifier(
            settings.telegram_bot_token,
            settings.telegram_chat_id,
            timeout=settings.notify_timeout,
        )

    return ServiceContext(
        settings=settings,
        kv=kv,
        objects=LocalObjectStore(settings.storage_base_path),
        notifier=notifier,
        verifier=verifier,
    )
