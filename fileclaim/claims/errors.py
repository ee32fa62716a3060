"""
Failure taxonomy for claim and download. Every external-call failure is
converted into one of these at the workflow boundary; public_message is the
only text an end user sees.
"""
from __future__ import annotations


class ClaimError(Exception):
    status_code: int = 500
    code: str = "error"
    title: str = "Fehler"
    public_message: str = "Die Anfrage konnte nicht verarbeitet werden."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail


class InvalidRequest(ClaimError):
    status_code = 400
    code = "invalid_request"
    public_message = "Transaktions-ID (ref) fehlt oder ist ungültig."


class PaymentNotConfirmed(ClaimError):
    status_code = 402
    code = "payment_not_confirmed"
    title = "Zahlung nicht bestätigt"
    public_message = "Die Zahlung konnte nicht bestätigt werden."

    def __init__(self, reason: str, detail: str | None = None) -> None:
        super().__init__(detail)
        self.reason = reason


class AlreadyClaimed(ClaimError):
    status_code = 409
    code = "already_claimed"
    title = "Bereits eingelöst"
    public_message = "Dieser Kauf wurde bereits eingelöst."


class NoItemAvailable(ClaimError):
    status_code = 503
    code = "no_item_available"
    public_message = "Derzeit ist keine Datei verfügbar."


class TokenInvalid(ClaimError):
    # Absent, expired and consumed look the same to the client.
    status_code = 410
    code = "token_invalid"
    title = "Link abgelaufen"
    public_message = "Dieser Einmal-Link ist nicht mehr gültig."


class StorageInconsistency(ClaimError):
    status_code = 404
    code = "storage_inconsistency"
    title = "Nicht gefunden"
    public_message = "Die Datei existiert nicht im Speicher."


class UpstreamUnavailable(ClaimError):
    status_code = 503
    code = "upstream_unavailable"
    title = "Dienst nicht erreichbar"
    public_message = "Der Dienst ist derzeit nicht erreichbar. Bitte später erneut versuchen."
