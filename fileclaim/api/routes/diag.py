"""
Diagnostics for operators (admin key required when configured):
- /debug: object listing, probe read, optional probe write (?action=write).
- /diag: catalog vs storage reconciliation, live token and claim counts.
Raw error text is allowed here and nowhere else.
"""
from fastapi import APIRouter, Depends, Query

from fileclaim.api.deps import get_context, require_admin
from fileclaim.claims.ledger import CLAIM_PREFIX, TOKEN_PREFIX
from fileclaim.core.context import ServiceContext


router = APIRouter(tags=["diagnostics"], dependencies=[Depends(require_admin)])

PROBE_WRITE_KEY = "ebooks/worker_probe.txt"
PROBE_READ_KEY = "ebooks/demo.pdf"
STORAGE_PREFIX = "ebooks/"


@router.get("/debug")
def debug(action: str | None = Query(None), ctx: ServiceContext = Depends(get_context)) -> dict:
    wrote = None
    if action == "write":
        wrote = ctx.objects.put(PROBE_WRITE_KEY, b"hello from worker")
    return {
        "ok": True,
        "wrote": wrote,
        "foundKeys": ctx.objects.list(limit=100),
        "probeKey": PROBE_READ_KEY,
        "probeOk": ctx.objects.exists(PROBE_READ_KEY),
    }


@router.get("/diag")
def diag(ctx: ServiceContext = Depends(get_context)) -> dict:
    loaded = ctx.catalog().load()
    stored = set(ctx.objects.list(prefix=STORAGE_PREFIX, limit=1000))
    catalog_paths = {item.path for item in loaded.items}

    missing = [{"id": item.id, "path": item.path} for item in loaded.items if item.path not in stored]
    extra = sorted(key for key in stored if key not in catalog_paths)

    return {
        "ok": True,
        "catalogSource": loaded.source,
        "catalogCount": len(loaded.items),
        "storageCount": len(stored),
        "missingInStorage": missing,
        "extraInStorage": extra,
        "activeTokens": sum(1 for _ in ctx.kv.scan(TOKEN_PREFIX)),
        "activeClaims": sum(1 for _ in ctx.kv.scan(CLAIM_PREFIX)),
    }
