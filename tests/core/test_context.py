"""build_context wiring from Settings."""
import tempfile

from fileclaim.core.config import Settings
from fileclaim.core.context import build_context
from fileclaim.services.payments.paypal import PayPalVerifier
from fileclaim.services.telegram.client import Notifier, TelegramNotifier
from fileclaim.storage.kv import InMemoryKeyValueStore, RedisKeyValueStore


class TestBuildContext:
    def test_memory_backend_minimal(self):
        with tempfile.TemporaryDirectory() as tmp:
            ctx = build_context(Settings(kv_backend="memory", storage_base_path=tmp))
        assert isinstance(ctx.kv, InMemoryKeyValueStore)
        assert ctx.verifier is None
        assert type(ctx.notifier) is Notifier

    def test_redis_backend_is_lazy(self):
        # redis-py connects on first command, so building does not need a server
        ctx = build_context(Settings(kv_backend="redis", redis_url="redis://localhost:6399/0"))
        assert isinstance(ctx.kv, RedisKeyValueStore)

    def test_optional_integrations(self):
        settings = Settings(
            kv_backend="memory",
            payment_provider="paypal",
            paypal_client_id="id",
            paypal_client_secret="secret",
            telegram_bot_token="123:abc",
            telegram_chat_id="42",
        )
        ctx = build_context(settings)
        assert isinstance(ctx.verifier, PayPalVerifier)
        assert isinstance(ctx.notifier, TelegramNotifier)
        ctx.close()

    def test_workflows_share_settings(self):
        ctx = build_context(Settings(kv_backend="memory", token_ttl_seconds=900))
        workflow = ctx.claim_workflow()
        assert workflow.token_ttl_seconds == 900
        assert workflow.verifier is None
        assert ctx.download_workflow().objects is ctx.objects
