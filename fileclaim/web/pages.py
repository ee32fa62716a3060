"""
HTML pages (Jinja2). Jinja autoescaping covers every value placed in a page.
"""
from pathlib import Path

from fastapi import Request
from fastapi.responses import HTMLResponse
from starlette.templating import Jinja2Templates

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def message_page(request: Request, title: str, message: str, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "message.html",
        {"title": title, "message": message, "page_title": title},
        status_code=status_code,
    )


def claim_page(request: Request, url: str, minutes: int, replayed: bool) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "claim_ready.html",
        {"url": url, "minutes": minutes, "replayed": replayed},
    )


def gate_page(request: Request, file_url: str, minutes: int) -> HTMLResponse:
    response = templates.TemplateResponse(
        request,
        "download_gate.html",
        {"file_url": file_url, "minutes": minutes},
    )
    response.headers["Cache-Control"] = "no-store"
    return response
