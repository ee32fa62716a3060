from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from fileclaim.api.deps import get_base_url, get_context, get_notifier, wants_json
from fileclaim.core.context import ServiceContext
from fileclaim.services.telegram.client import Notifier
from fileclaim.web.pages import claim_page, message_page


router = APIRouter(tags=["claim"])


@router.get("/claim")
def claim(
    request: Request,
    ref: str | None = Query(None),
    tx: str | None = Query(None, description="Alias of ref"),
    item: str | None = Query(None),
    ctx: ServiceContext = Depends(get_context),
    notifier: Notifier = Depends(get_notifier),
    base_url: str = Depends(get_base_url),
) -> Response:
    """Turn a transaction reference into a one-time download link (HTML, or JSON with json=1)."""
    workflow = ctx.claim_workflow(notifier)
    result = workflow.claim(ref or tx, base_url, requested_item_id=item)

    if wants_json(request):
        return JSONResponse(
            {"ok": True, "url": result.download_url, "itemId": result.item_id, "ttlSeconds": result.ttl_remaining},
            headers={"Cache-Control": "no-store"},
        )
    response = claim_page(request, result.download_url, result.ttl_remaining // 60, result.replayed)
    response.headers["Cache-Control"] = "no-store"
    return response


@router.api_route("/claim", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def claim_method_not_allowed(request: Request) -> Response:
    return message_page(request, "405", "Nur GET erlaubt.", status_code=405)
