"""Exception hierarchy for the crawler.

Errors fall into a few kinds that callers treat differently:

- transient fetch failures (``ServerError``, timeouts, network errors) are
  retried by the reliability layer;
- fatal-for-call failures (``ClientError``, ``AuthenticationError``,
  ``ProductValidationError``) are surfaced immediately;
- ``CircuitOpenError`` signals that the circuit breaker refused the call;
- storage constraint failures (``DuplicateSnapshotError``) end a single work
  item, never the run;
- fatal-for-run failures (``StorageError`` on open, ``RunNotFoundError``,
  ``RunAlreadyCompletedError``, ``ConfigError``) stop the crawl before it starts.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class ConfigError(CrawlerError):
    """Configuration file missing or invalid."""


class FetchError(CrawlerError):
    """Upstream call failed, optionally with an HTTP status code."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ClientError(FetchError):
    """4xx response from the catalog API."""


class ServerError(FetchError):
    """5xx response from the catalog API."""


class AuthenticationError(FetchError):
    """Session or token rejected by the catalog API."""


class TokenExpiredError(AuthenticationError):
    """Access token expired; refresh and try once more."""

    def __init__(self, message: str = "Access token expired", status_code: Optional[int] = 401):
        super().__init__(message, status_code)


class ProductValidationError(CrawlerError):
    """A raw product record failed validation."""

    def __init__(self, message: str, field: str = "unknown"):
        super().__init__(message)
        self.field = field


class CircuitOpenError(CrawlerError):
    """Call rejected because the circuit breaker is open."""

    def __init__(self, message: str = "Circuit breaker is open"):
        super().__init__(message)


class StorageError(CrawlerError):
    """Database could not be opened or written."""


class DuplicateSnapshotError(StorageError):
    """A snapshot for this (product, outlet, scraped_at) already exists."""

    def __init__(self, product_id: str, outlet_id: str, scraped_at: str):
        super().__init__(
            f"Duplicate snapshot for product {product_id} at outlet {outlet_id} ({scraped_at})"
        )
        self.product_id = product_id
        self.outlet_id = outlet_id
        self.scraped_at = scraped_at


class LedgerError(StorageError):
    """Checkpoint ledger update did not match any work item."""


class RunNotFoundError(CrawlerError):
    """Requested run id does not exist."""

    def __init__(self, run_id: int):
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class RunAlreadyCompletedError(CrawlerError):
    """Requested run has already completed."""

    def __init__(self, run_id: int):
        super().__init__(f"Run {run_id} is already completed")
        self.run_id = run_id
