from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import HTMLResponse

from fileclaim.api.deps import get_context
from fileclaim.core.context import ServiceContext
from fileclaim.storage.kv import KeyValueStoreError
from fileclaim.web.pages import message_page


router = APIRouter()


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    return message_page(request, "fileclaim", "OK.")


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, ctx: ServiceContext = Depends(get_context)) -> dict:
    """Readiness probe - returns 503 if the token ledger is unavailable."""
    try:
        ctx.kv.ping()
        return {"status": "ready"}
    except KeyValueStoreError as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}
