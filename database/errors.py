"""Exception types shared by the storage layer and the services built on it."""


class PortfolioTrackerError(Exception):
    """Base class for all errors raised by the portfolio tracker."""


class CSVParseError(PortfolioTrackerError):
    """A broker export could not be understood.

    Raised per file; the importer turns it into a message in the batch
    result instead of letting it escape.
    """


class StorageError(PortfolioTrackerError):
    """A write to the record store failed; the operation was rolled back."""


class DuplicateRecordError(PortfolioTrackerError):
    """A unique constraint rejected an insert."""

    def __init__(self, message: str, symbol: str | None = None):
        super().__init__(message)
        self.symbol = symbol


class DuplicateAlertError(DuplicateRecordError):
    """An alert of this type already exists for the watchlist entry."""

    def __init__(self, symbol: str, alert_type: str):
        super().__init__(
            f"A {alert_type} alert already exists for {symbol}.", symbol=symbol,
        )
        self.alert_type = alert_type


class DuplicateWatchlistEntryError(DuplicateRecordError):
    """The symbol is already on the user's watchlist."""

    def __init__(self, symbol: str):
        super().__init__(f"{symbol} is already in your watchlist.", symbol=symbol)


class DuplicateScreenError(DuplicateRecordError):
    """A screen with this short code already exists."""

    def __init__(self, short_code: str):
        super().__init__(f"Screen short code {short_code} already exists.")
        self.short_code = short_code
