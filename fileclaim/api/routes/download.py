"""
Download endpoints:
- /download/{token}: gate page, validates without consuming.
- /file/{token}: consumes the token and streams the file.
"""
import math

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from fileclaim.api.deps import get_context, get_notifier, wants_json
from fileclaim.core.context import ServiceContext
from fileclaim.services.telegram.client import Notifier
from fileclaim.web.pages import gate_page, message_page


router = APIRouter(tags=["download"])


@router.get("/download/{token}")
def download_gate(
    token: str,
    request: Request,
    ctx: ServiceContext = Depends(get_context),
) -> Response:
    record = ctx.download_workflow().inspect(token)
    seconds_left = max(0, math.ceil(record.expires_at - ctx.clock()))
    file_url = str(request.url_for("download_file", token=token))

    if wants_json(request):
        return JSONResponse(
            {"ok": True, "itemId": record.item_id, "ttlSeconds": seconds_left, "fileUrl": file_url},
            headers={"Cache-Control": "no-store"},
        )
    return gate_page(request, file_url, seconds_left // 60)


@router.get("/file/{token}", name="download_file")
def download_file(
    token: str,
    ctx: ServiceContext = Depends(get_context),
    notifier: Notifier = Depends(get_notifier),
) -> StreamingResponse:
    delivery = ctx.download_workflow(notifier).serve(token)
    headers = {
        "Content-Disposition": f'attachment; filename="{delivery.filename}"',
        "Cache-Control": "no-store",
        "X-Filename": delivery.filename,
        "Content-Length": str(delivery.size),
    }
    return StreamingResponse(delivery.chunks, media_type=delivery.content_type, headers=headers)


@router.api_route("/download/{token}", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
@router.api_route("/file/{token}", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def download_method_not_allowed(token: str, request: Request) -> Response:
    return message_page(request, "405", "Nur GET erlaubt.", status_code=405)
