"""Exception taxonomy shared by the marketplace core and the HTTP layer."""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base error; `error_code` is echoed in API error bodies."""

    error_code = "marketplace_error"


class NotFound(MarketplaceError):
    error_code = "not_found"


class StateConflict(MarketplaceError):
    """A status or BUSY precondition did not hold at write time."""

    error_code = "state_conflict"


class ConfigurationError(MarketplaceError):
    """A collaborator (marketplace log, reasoning service) is not configured."""

    error_code = "configuration_error"


class LedgerError(MarketplaceError):
    error_code = "ledger_error"


class LedgerUnavailable(LedgerError):
    """Network or consensus failure after the retry budget was spent."""

    error_code = "ledger_unavailable"


class LedgerReceiptError(LedgerError):
    """The ledger answered with a non-success receipt status."""

    error_code = "ledger_receipt_failed"

    def __init__(self, message: str, *, status: str) -> None:
        super().__init__(message)
        self.status = status


class PaymentNotSettled(LedgerError):
    error_code = "payment_not_settled"


class ParseError(MarketplaceError):
    """Tool-call arguments from the reasoning service were malformed."""

    error_code = "parse_error"


class UpstreamUnavailable(MarketplaceError):
    """Reasoning or search service failure."""

    error_code = "upstream_unavailable"
