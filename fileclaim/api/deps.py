import hmac

from fastapi import BackgroundTasks, Depends, HTTPException, Request, status

from fileclaim.core.context import ServiceContext
from fileclaim.services.telegram.client import Notifier


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def get_base_url(request: Request, ctx: ServiceContext = Depends(get_context)) -> str:
    """Origin for generated links: configured public URL, else the request's own."""
    if ctx.settings.public_base_url:
        return ctx.settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def wants_json(request: Request) -> bool:
    return request.query_params.get("json") == "1"


class BackgroundNotifier(Notifier):
    """Defers notify() until after the response has been sent."""

    def __init__(self, inner: Notifier, background_tasks: BackgroundTasks) -> None:
        self._inner = inner
        self._background_tasks = background_tasks

    def notify(self, text: str) -> None:
        self._background_tasks.add_task(self._inner.notify, text)


def get_notifier(background_tasks: BackgroundTasks, ctx: ServiceContext = Depends(get_context)) -> Notifier:
    return BackgroundNotifier(ctx.notifier, background_tasks)


def require_admin(request: Request, ctx: ServiceContext = Depends(get_context)) -> None:
    """Debug/diag gate: disabled -> 404; admin_api_key set -> X-Admin-Key must match."""
    if not ctx.settings.debug_endpoints_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    expected = ctx.settings.admin_api_key
    if expected:
        provided = request.headers.get("X-Admin-Key", "")
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")
