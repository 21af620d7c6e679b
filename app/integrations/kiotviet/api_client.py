"""
KiotViet public API client.
Thin translation layer between method calls and authenticated HTTP requests
(products, inventory, customers, orders, branches, webhooks). Never retries;
callers own the retry policy.
"""

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from app.config import settings
from app.integrations.kiotviet.models import KiotVietProduct, ProductPage, RemoteOrderRef
from app.integrations.kiotviet.token_cache import KiotVietTokenCache
from app.integrations.kiotviet.transformer import KiotVietTransformer

logger = structlog.get_logger()


class RemoteApiError(Exception):
    """Raised when a KiotViet API call fails (status_code 0 for transport failures)."""

    def __init__(self, status_code: int, message: str, body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"KiotViet API error {status_code}: {message}")


class KiotVietAPIClient:
    """Async client for the KiotViet public API."""

    def __init__(
        self,
        token_cache: KiotVietTokenCache,
        base_url: str | None = None,
        retailer_name: str | None = None,
        website_branch_id: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the KiotViet API client.

        Args:
            token_cache: Source of bearer tokens
            base_url: Public API base URL (defaults to settings)
            retailer_name: Value of the Retailer header (defaults to settings)
            website_branch_id: Branch used for inventory and connection checks
            http_client: Optional preconfigured httpx client (mainly for tests)
        """
        self.token_cache = token_cache
        self.base_url = (base_url or settings.kiotviet_base_url).rstrip("/")
        self.retailer_name = retailer_name or settings.kiotviet_retailer_name
        self.website_branch_id = website_branch_id or settings.kiotviet_website_branch_id
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.kiotviet_request_timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _headers(self) -> dict[str, str]:
        token = await self.token_cache.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Retailer": self.retailer_name,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = await self._headers()
        try:
            response = await self._get_client().request(
                method, url, headers=headers, params=params, json=json
            )
        except httpx.HTTPError as e:
            logger.error("KiotViet request failed", method=method, path=path, error=str(e))
            raise RemoteApiError(0, str(e)) from e

        if response.status_code == 401:
            # Token revoked or expired early; force a fresh grant on the next call
            self.token_cache.invalidate()

        if not response.is_success:
            logger.error(
                "KiotViet API error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise RemoteApiError(
                response.status_code,
                f"{method} {path} failed: {response.status_code}",
                body=response.text,
            )

        if not response.content:
            return {}
        return response.json()

    async def list_products(
        self,
        page: int,
        page_size: int = 100,
        modified_since: str | None = None,
    ) -> ProductPage:
        """
        Fetch one page of the catalog.

        GET /products?pageSize=&currentItem=&includeInventory=false[&lastModifiedFrom=]

        Args:
            page: Zero-based page index
            page_size: Items per page
            modified_since: Optional ISO timestamp limiting results to recently modified products

        Returns:
            ProductPage with the items and the remote total
        """
        params: dict[str, Any] = {
            "pageSize": page_size,
            "currentItem": page * page_size,
            "includeInventory": "false",
        }
        if modified_since:
            params["lastModifiedFrom"] = modified_since

        data = await self._request("GET", "/products", params=params)
        items: list[KiotVietProduct] = []
        invalid_items = 0
        for raw in data.get("data") or []:
            try:
                items.append(KiotVietProduct.model_validate(raw))
            except ValidationError as e:
                # One malformed product must not cost the rest of the page
                invalid_items += 1
                logger.warning(
                    "Skipping malformed KiotViet product",
                    kiotviet_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(e),
                )
        logger.debug("Fetched product page", page=page, returned=len(items), total=data.get("total"))
        return ProductPage(
            items=items, total=int(data.get("total") or 0), invalid_items=invalid_items
        )

    async def get_product_inventory(self, remote_id: str | int) -> int:
        """
        Return on-hand quantity for a product at the website branch.

        Falls back to the sum over all branches when the website branch has no
        inventory row.
        """
        data = await self._request("GET", f"/products/{remote_id}")
        inventories = data.get("inventories") or []
        branch_rows = [
            inv for inv in inventories if inv.get("branchId") == self.website_branch_id
        ]
        rows = branch_rows or inventories
        return int(sum(float(inv.get("onHand") or 0) for inv in rows))

    async def create_order(self, payload: dict[str, Any]) -> RemoteOrderRef:
        """
        Create an order on KiotViet.

        POST /orders

        Returns:
            RemoteOrderRef with the KiotViet order id and code
        """
        data = await self._request("POST", "/orders", json=payload)
        order = data.get("data") if isinstance(data.get("data"), dict) else data
        if order.get("id") is None:
            raise RemoteApiError(200, "Order response has no id", body=str(data)[:500])
        logger.info("Created KiotViet order", code=order.get("code"), remote_order_id=order["id"])
        return RemoteOrderRef(remote_order_id=str(order["id"]), code=order.get("code"))

    async def create_customer(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Create a customer on KiotViet.

        POST /customers
        """
        data = await self._request("POST", "/customers", json=payload)
        customer = data.get("data") if isinstance(data.get("data"), dict) else data
        logger.info(
            "Created KiotViet customer", customer_id=customer.get("id"), code=customer.get("code")
        )
        return customer

    async def find_customer_by_phone(self, phone: str) -> dict[str, Any] | None:
        """
        Find a KiotViet customer by phone number.

        GET /customers?contactNumber=...

        Numbers are compared in +84 form, so "0901 234 567" matches "+84901234567".

        Returns:
            The first matching customer, or None
        """
        target = KiotVietTransformer.to_international_phone(phone)
        if not target:
            return None
        data = await self._request(
            "GET", "/customers", params={"contactNumber": phone, "pageSize": 100}
        )
        for customer in data.get("data") or []:
            if KiotVietTransformer.to_international_phone(customer.get("contactNumber")) == target:
                return customer
        return None

    async def list_branches(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/branches")
        return data.get("data") or []

    async def test_connection(self) -> dict[str, Any]:
        """
        Check credentials and that the website branch exists. Never raises.

        Returns:
            {"success": bool, "message": str}
        """
        try:
            branches = await self.list_branches()
        except Exception as e:
            logger.error("KiotViet connection test failed", error=str(e))
            return {"success": False, "message": f"Connection failed: {e}"}

        branch = next((b for b in branches if b.get("id") == self.website_branch_id), None)
        if branch is None:
            available = ", ".join(f"{b.get('id')}({b.get('branchName')})" for b in branches)
            return {
                "success": False,
                "message": f"Branch {self.website_branch_id} not found. Available: {available}",
            }
        return {
            "success": True,
            "message": (
                f"Connected to KiotViet. Using branch {branch.get('branchName')} "
                f"(ID: {self.website_branch_id})"
            ),
        }

    # Webhook management

    async def list_webhooks(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/webhooks")
        return data.get("data") or []

    async def register_webhook(
        self,
        url: str,
        secret: str,
        webhook_type: str = "order.update",
        description: str = "",
    ) -> dict[str, Any]:
        """
        Register a webhook subscription.

        POST /webhooks
        """
        payload = {
            "Webhook": {
                "Type": webhook_type,
                "Url": url,
                "IsActive": True,
                "Description": description,
                "Secret": secret,
            }
        }
        data = await self._request("POST", "/webhooks", json=payload)
        logger.info("Registered KiotViet webhook", url=url, webhook_type=webhook_type)
        return data

    async def delete_webhook(self, webhook_id: int | str) -> None:
        await self._request("DELETE", f"/webhooks/{webhook_id}")
        logger.info("Deleted KiotViet webhook", webhook_id=webhook_id)
