"""Fetch collaborator: pages of raw catalog products for an outlet and category."""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .catalog import (
    API_BASE,
    DEFAULT_STORE_ID,
    PAGE_SIZE,
    SEARCH_PATH,
    SITE_URL,
    STORE_ID_COOKIE,
    USER_TOKEN_COOKIE,
    build_product_search_payload,
    cookie_value,
    request_headers,
)
from .errors import (
    AuthenticationError,
    ClientError,
    FetchError,
    ProductValidationError,
    ServerError,
    TokenExpiredError,
)
from .models import PageResult
from .reliability.config import TimeoutConfig
from .stealth import STEALTH_ARGS, apply_stealth, get_stealth_context_options
from .token import TokenManager

logger = structlog.get_logger(__name__)


class CatalogFetcher(Protocol):
    """What the orchestrator needs from a fetch implementation."""

    async def start(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def fetch_page(
        self,
        outlet_id: str,
        category0: str,
        category1: Optional[str],
        page: int,
    ) -> PageResult:
        ...

    async def refresh_token(self) -> None:
        ...


def raise_for_status(status: int, url: str) -> None:
    """Map an HTTP status to the crawler's error kinds."""
    if status < 400:
        return
    if status == 401:
        raise TokenExpiredError(f"Token rejected by {url}")
    if status == 403:
        raise AuthenticationError(f"Access forbidden by {url}", status_code=status)
    if status < 500:
        raise ClientError(f"HTTP {status} from {url}", status_code=status)
    raise ServerError(f"HTTP {status} from {url}", status_code=status)


def parse_search_response(body: Any, page: int) -> PageResult:
    """
    Turn a search response body into a PageResult.

    Raises:
        ProductValidationError: If the body is not a search result object
    """
    if not isinstance(body, dict):
        raise ProductValidationError("Search response is not an object", field="body")

    products = body.get("products", [])
    if not isinstance(products, list):
        raise ProductValidationError("Search response products is not a list", field="products")

    records: List[Dict[str, Any]] = list(products)
    has_more = len(records) >= PAGE_SIZE

    total_hits = body.get("totalHits")
    if isinstance(total_hits, int) and not isinstance(total_hits, bool):
        has_more = has_more and (page + 1) * PAGE_SIZE < total_hits

    return PageResult(records=records, has_more=has_more)


class PlaywrightCatalogFetcher:
    """
    Fetch catalog pages through a real browser session.

    The browser visits the storefront to obtain session cookies. After each
    navigation the access token and default store id are read from the
    context cookies, and search requests are posted through the context's
    request client so they carry the same session.
    """

    def __init__(
        self,
        headless: bool = True,
        timeouts: Optional[TimeoutConfig] = None,
        proxy: Optional[Dict[str, str]] = None,
        tokens: Optional[TokenManager] = None,
    ):
        """
        Initialize fetcher.

        Args:
            headless: Run the browser without a window
            timeouts: Navigation and whole-operation timeouts
            proxy: Playwright proxy settings, e.g. {"server": "http://host:port"}
            tokens: Token manager (a fresh one is created when None)
        """
        self.headless = headless
        self.timeouts = timeouts or TimeoutConfig()
        self.proxy = proxy
        self.tokens = tokens or TokenManager()
        self.default_outlet_id: Optional[str] = None

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    async def start(self) -> None:
        """Launch the browser and establish a session."""
        logger.info("browser_starting", headless=self.headless)

        self._playwright = await async_playwright().start()
        launch_options: Dict[str, Any] = {"headless": self.headless, "args": STEALTH_ARGS}
        if self.proxy:
            launch_options["proxy"] = self.proxy

        self._browser = await self._playwright.chromium.launch(**launch_options)
        self._context = await self._browser.new_context(**get_stealth_context_options())
        self._page = await self._context.new_page()
        await apply_stealth(self._page)

        self.tokens.set(await self._navigate_for_token())
        logger.info(
            "session_established",
            default_outlet_id=self.default_outlet_id,
            has_token=self.tokens.token is not None,
        )

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning("browser_close_failed", error=str(e))
            self._browser = None
            self._context = None
            self._page = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("browser_closed")

    async def __aenter__(self) -> "PlaywrightCatalogFetcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _navigate_for_token(self) -> Optional[str]:
        """Load the storefront, then read the session cookies."""
        if self._page is None:
            raise FetchError("Fetcher not started. Call start() first.")

        try:
            await self._page.goto(
                SITE_URL,
                wait_until="networkidle",
                timeout=self.timeouts.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Navigation to {SITE_URL} timed out") from e
        except PlaywrightError as e:
            raise FetchError(f"Network error navigating to {SITE_URL}: {e}") from e

        return await self._extract_session()

    async def _extract_session(self) -> Optional[str]:
        """Read token and store id from the context cookies."""
        cookies = await self._context.cookies()
        token = cookie_value(cookies, USER_TOKEN_COOKIE)

        store_id = cookie_value(cookies, STORE_ID_COOKIE)
        if store_id is None:
            logger.warning("store_cookie_missing", fallback=DEFAULT_STORE_ID)
            store_id = DEFAULT_STORE_ID
        self.default_outlet_id = store_id

        if token is None:
            logger.warning("token_cookie_missing")
        return token

    async def refresh_token(self) -> None:
        """Force a token refresh (after the API rejected the current one)."""
        await self.tokens.refresh(self._navigate_for_token, force=True)

    async def fetch_page(
        self,
        outlet_id: str,
        category0: str,
        category1: Optional[str],
        page: int,
    ) -> PageResult:
        """
        Fetch one page of products.

        Args:
            outlet_id: Store to price products for
            category0: Top-level category
            category1: Subcategory
            page: Zero-based page number

        Returns:
            PageResult with raw product records

        Raises:
            TokenExpiredError: On 401
            AuthenticationError: On 403
            ClientError: On other 4xx
            ServerError: On 5xx
            TimeoutError: If the request exceeds the operation timeout
            ProductValidationError: If the response body is malformed
        """
        if self._context is None:
            raise FetchError("Fetcher not started. Call start() first.")

        if self.tokens.is_expiring_soon():
            await self.tokens.refresh(self._navigate_for_token)

        try:
            return await asyncio.wait_for(
                self._post_search(outlet_id, category0, category1, page),
                timeout=self.timeouts.operation_timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Fetching {category0} > {category1} page {page} timed out"
            ) from e

    async def _post_search(
        self,
        outlet_id: str,
        category0: str,
        category1: Optional[str],
        page: int,
    ) -> PageResult:
        url = f"{API_BASE}{SEARCH_PATH}"
        payload = build_product_search_payload(
            outlet_id,
            category0=category0,
            category1=category1,
            page=page,
        )

        logger.debug(
            "catalog_request",
            outlet_id=outlet_id,
            category0=category0,
            category1=category1,
            page=page,
        )

        try:
            response = await self._context.request.post(
                url,
                data=payload,
                headers=request_headers(self.tokens.token),
                timeout=self.timeouts.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Request to {url} timed out") from e
        except PlaywrightError as e:
            raise FetchError(f"Network error requesting {url}: {e}") from e

        raise_for_status(response.status, url)

        try:
            body = await response.json()
        except (ValueError, PlaywrightError) as e:
            raise ProductValidationError(f"Invalid JSON from {url}: {e}", field="body") from e

        result = parse_search_response(body, page)
        logger.debug(
            "catalog_page_fetched",
            outlet_id=outlet_id,
            page=page,
            records=len(result.records),
            has_more=result.has_more,
        )
        return result
