"""
Claim and download core: catalog selection, one-time token ledger, workflows.
Workflows raise ClaimError subclasses; the HTTP layer maps them to responses.
"""
from fileclaim.claims.catalog import CatalogSelector, decode_catalog
from fileclaim.claims.claim import ClaimWorkflow
from fileclaim.claims.download import DownloadWorkflow
from fileclaim.claims.errors import (
    AlreadyClaimed,
    ClaimError,
    InvalidRequest,
    NoItemAvailable,
    PaymentNotConfirmed,
    StorageInconsistency,
    TokenInvalid,
    UpstreamUnavailable,
)
from fileclaim.claims.ledger import TokenLedger
from fileclaim.claims.models import (
    CatalogItem,
    CatalogLoadResult,
    ClaimRecord,
    ClaimResult,
    Delivery,
    TokenRecord,
)

__all__ = [
    "AlreadyClaimed",
    "CatalogItem",
    "CatalogLoadResult",
    "CatalogSelector",
    "ClaimError",
    "ClaimRecord",
    "ClaimResult",
    "ClaimWorkflow",
    "Delivery",
    "DownloadWorkflow",
    "InvalidRequest",
    "NoItemAvailable",
    "PaymentNotConfirmed",
    "StorageInconsistency",
    "TokenInvalid",
    "TokenLedger",
    "UpstreamUnavailable",
    "decode_catalog",
]
