"""
Telegram notifications using httpx sync client.
notify() is fire-and-forget: it never raises, whatever the Bot API does.
"""
import logging

import httpx

from fileclaim.utils.metrics import notifications_total


logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class Notifier:
    """Observer for claim/download events. Base class is a no-op."""

    def notify(self, text: str) -> None:
        return None


class TelegramNotifier(Notifier):
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        self._chat_id = chat_id
        self._base_url = f"{api_base}/bot{bot_token}"
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def notify(self, text: str) -> None:
        try:
            resp = self.client.post(
                f"{self._base_url}/sendMessage",
                json={"chat_id": self._chat_id, "text": text},
            )
            result = resp.json()
            if not result.get("ok"):
                raise RuntimeError(f"{result.get('error_code', resp.status_code)}: {result.get('description', 'Unknown error')}")
            notifications_total.labels(status="success").inc()
        except Exception as e:
            notifications_total.labels(status="error").inc()
            logger.warning(
                "notify_failed",
                extra={"error": f"{type(e).__name__}: {e}"},
            )

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
