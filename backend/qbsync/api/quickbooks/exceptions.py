from typing import Optional

from fastapi import HTTPException, status


class QuickBooksError(HTTPException):
    """Base for QuickBooks integration failures.

    `reason` is a short, stable code that is safe to put in a redirect URL.
    """

    reason = "quickbooks_error"

    def __init__(self, status_code: int, detail: str, reason: Optional[str] = None) -> None:
        super().__init__(status_code=status_code, detail=detail)
        if reason:
            self.reason = reason


class NotConnectedError(QuickBooksError):
    reason = "not_connected"

    def __init__(self, message: str = "QuickBooks not connected") -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, message)


class InvalidStateError(QuickBooksError):
    reason = "invalid_state"

    def __init__(self, message: str = "Invalid or missing OAuth state") -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, message)


class ProviderDeniedError(QuickBooksError):
    """QuickBooks redirected back with an `error` parameter."""

    def __init__(self, error: str) -> None:
        super().__init__(
            status.HTTP_400_BAD_REQUEST,
            f"QuickBooks authorization failed: {error}",
            reason=error,
        )
        self.error = error


class MissingCallbackParamsError(QuickBooksError):
    reason = "missing_params"

    def __init__(self, message: str = "Missing code or realmId in callback") -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, message)


class ProviderRequestFailed(QuickBooksError):
    """Any non-2xx (or transport failure) talking to QuickBooks."""

    reason = "provider_request_failed"

    def __init__(
        self,
        provider_status: Optional[int],
        body: str,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            status.HTTP_502_BAD_GATEWAY,
            f"QuickBooks API error: {provider_status} - {body}",
            reason=reason,
        )
        self.provider_status = provider_status
        self.body = body


class SignatureInvalidError(QuickBooksError):
    reason = "invalid_signature"

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(status.HTTP_401_UNAUTHORIZED, message)


class PersistenceFailedError(QuickBooksError):
    reason = "persistence_failed"

    def __init__(self, message: str = "Failed to write local record") -> None:
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, message)


class InvoiceNotFoundError(QuickBooksError):
    reason = "invoice_not_found"

    def __init__(self) -> None:
        super().__init__(status.HTTP_404_NOT_FOUND, "Invoice not found")


class InvoiceNotSyncedError(QuickBooksError):
    reason = "not_synced"

    def __init__(self) -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, "Invoice not synced from QuickBooks")


class ForbiddenError(QuickBooksError):
    reason = "forbidden"

    def __init__(self, message: str = "Admin only") -> None:
        super().__init__(status.HTTP_403_FORBIDDEN, message)
