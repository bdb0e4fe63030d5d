"""
Shopee Open Platform (v2) partner API client.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from ..db.models import utcnow

logger = logging.getLogger(__name__)

AUTH_PARTNER_PATH = "/api/v2/shop/auth_partner"
TOKEN_GET_PATH = "/api/v2/auth/token/get"
TOKEN_REFRESH_PATH = "/api/v2/auth/access_token/get"
ITEM_LIST_PATH = "/api/v2/product/get_item_list"
ITEM_BASE_INFO_PATH = "/api/v2/product/get_item_base_info"


class ShopeeClientError(Exception):
    """Base exception for Shopee client errors."""
    pass


class ShopeeAuthError(ShopeeClientError):
    """Access token invalid or expired."""
    pass


class ShopeeRateLimitError(ShopeeClientError):
    """Rate limit exceeded."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class TokenGrant:
    """Credentials returned by the token endpoints."""
    access_token: str
    refresh_token: str
    expire_in: int  # seconds
    issued_at: datetime = field(default_factory=utcnow)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expire_in)


@dataclass
class ItemListPage:
    """One page of get_item_list."""
    items: List[Dict[str, Any]]
    has_next_page: bool
    next_offset: int
    total_count: int


def _as_int(value: Any) -> Any:
    """Shopee expects numeric ids in JSON bodies."""
    text = str(value)
    return int(text) if text.isdigit() else value


class ShopeeClient:
    """
    Async HTTP client for the Shopee partner API.

    Every call is signed with the partner key. Transport errors and HTTP 429
    are retried with exponential backoff; token errors are not.
    """

    MAX_RETRIES = 5
    BASE_RETRY_DELAY = 1.0  # seconds

    def __init__(
        self,
        partner_id: str,
        partner_key: str,
        base_url: str = "https://partner.shopeemobile.com",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not partner_id or not partner_key:
            raise ShopeeClientError("Shopee API credentials not configured")

        self.partner_id = str(partner_id)
        self.partner_key = partner_key
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(30.0, connect=10.0),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ===== Signing =====

    def sign(self, path: str, timestamp: int, access_token: str = "", shop_id: str = "") -> str:
        """HMAC-SHA256 over partner_id + path + timestamp + access_token + shop_id."""
        base_string = f"{self.partner_id}{path}{timestamp}{access_token}{shop_id}"
        return hmac.new(
            self.partner_key.encode("utf-8"),
            base_string.encode("utf-8"),
            hashlib.sha256
        ).hexdigest()

    def _common_params(
        self,
        path: str,
        access_token: str = "",
        shop_id: str = ""
    ) -> Dict[str, Any]:
        timestamp = int(time.time())
        params = {
            "partner_id": self.partner_id,
            "timestamp": timestamp,
        }
        if access_token:
            params["access_token"] = access_token
        if shop_id:
            params["shop_id"] = str(shop_id)
        params["sign"] = self.sign(path, timestamp, access_token, str(shop_id) if shop_id else "")
        return params

    def build_authorize_url(self, redirect: str, state: str) -> str:
        """URL of the seller authorization page."""
        params = self._common_params(AUTH_PARTNER_PATH)
        params["redirect"] = redirect
        params["state"] = state
        return f"{self.base_url}{AUTH_PARTNER_PATH}?{urlencode(params)}"

    # ===== Transport =====

    @staticmethod
    def _check_error(result: Dict[str, Any]) -> None:
        error = result.get("error")
        if not error:
            return
        message = result.get("message") or error
        if "token" in str(error).lower() or "auth" in str(error).lower():
            raise ShopeeAuthError(f"{error}: {message}")
        raise ShopeeClientError(f"{error}: {message}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str = "",
        shop_id: str = "",
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send a signed request with retry logic.

        Returns:
            The decoded JSON response

        Raises:
            ShopeeAuthError: If the token is rejected
            ShopeeRateLimitError: If rate limit exceeded after retries
            ShopeeClientError: For other errors
        """
        client = await self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            # Signature embeds the timestamp, so it is rebuilt per attempt
            query = self._common_params(path, access_token, shop_id)
            if params:
                query.update(params)

            try:
                response = await client.request(method, path, params=query, json=body)

                if response.status_code in (401, 403):
                    raise ShopeeAuthError(
                        f"Authentication failed ({response.status_code}) for {path}"
                    )

                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise ShopeeRateLimitError(
                        "Rate limit exceeded",
                        retry_after=float(retry_after) if retry_after else None
                    )

                if response.status_code >= 400:
                    raise ShopeeClientError(
                        f"Shopee API error: {response.status_code} {response.reason_phrase}"
                    )

                result = response.json()
                self._check_error(result)
                return result

            except ShopeeRateLimitError as e:
                last_error = e
                delay = e.retry_after or (self.BASE_RETRY_DELAY * (2 ** attempt))
                logger.warning(
                    f"Rate limited, waiting {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)

            except ShopeeClientError:
                raise

            except httpx.RequestError as e:
                last_error = ShopeeClientError(f"Request error: {e}")
                delay = self.BASE_RETRY_DELAY * (2 ** attempt)
                logger.warning(f"Request error, retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)

            except ValueError as e:
                raise ShopeeClientError(f"Invalid JSON from {path}: {e}") from e

        raise last_error or ShopeeClientError("Max retries exceeded")

    # ===== Auth =====

    @staticmethod
    def _token_grant(result: Dict[str, Any]) -> TokenGrant:
        data = result.get("response") or result
        if not data.get("access_token"):
            raise ShopeeAuthError(result.get("message") or "No access token in response")
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expire_in=int(data.get("expire_in", 0)),
        )

    async def get_access_token(self, code: str, shopee_shop_id: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        result = await self._request(
            "POST",
            TOKEN_GET_PATH,
            body={
                "code": code,
                "shop_id": _as_int(shopee_shop_id),
                "partner_id": _as_int(self.partner_id),
            },
        )
        return self._token_grant(result)

    async def refresh_access_token(self, refresh_token: str, shopee_shop_id: str) -> TokenGrant:
        result = await self._request(
            "POST",
            TOKEN_REFRESH_PATH,
            body={
                "refresh_token": refresh_token,
                "shop_id": _as_int(shopee_shop_id),
                "partner_id": _as_int(self.partner_id),
            },
        )
        return self._token_grant(result)

    # ===== Products =====

    async def get_item_list(
        self,
        shopee_shop_id: str,
        access_token: str,
        offset: int = 0,
        page_size: int = 50
    ) -> ItemListPage:
        """List NORMAL (active) items of a shop, one page at a time."""
        result = await self._request(
            "GET",
            ITEM_LIST_PATH,
            access_token=access_token,
            shop_id=shopee_shop_id,
            params={"offset": offset, "page_size": page_size, "item_status": "NORMAL"},
        )
        data = result.get("response")
        if data is None:
            raise ShopeeClientError(result.get("message") or "Failed to fetch products")

        return ItemListPage(
            items=data.get("item_list") or [],
            has_next_page=bool(data.get("has_next_page")),
            next_offset=int(data.get("next_offset") or 0),
            total_count=int(data.get("total_count") or 0),
        )

    async def get_item_base_info(
        self,
        shopee_shop_id: str,
        access_token: str,
        item_ids: List[int]
    ) -> List[Dict[str, Any]]:
        if not item_ids:
            return []
        result = await self._request(
            "GET",
            ITEM_BASE_INFO_PATH,
            access_token=access_token,
            shop_id=shopee_shop_id,
            params={"item_id_list": ",".join(str(i) for i in item_ids)},
        )
        data = result.get("response")
        if data is None:
            raise ShopeeClientError(result.get("message") or "Failed to fetch product details")
        return data.get("item_list") or []
