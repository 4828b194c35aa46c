"""Dr. Green endpoint helpers.

Thin wrappers over DrGreenClient.request() for the endpoints the
storefront uses, plus normalization of catalogue entries into the shape
the storefront renders.
"""

import re
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from budstack.drgreen.client import DrGreenClient, DrGreenCredentials
from budstack.drgreen.regions import currency_for_country, to_alpha3
from budstack.errors import UpstreamLogicError

logger = structlog.get_logger(__name__)

DEFAULT_COUNTRY = "SA"
DEFAULT_IMAGE_HOST = "https://api.drgreennft.com"


class DrGreenProduct(BaseModel):
    """Normalized catalogue entry (a Dr. Green "strain")."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Dr. Green strain ID")
    name: str = Field(default="", description="Display name")
    description: str = Field(default="", description="Long description")
    strain_type: str = Field(default="HYBRID", description="INDICA, SATIVA or HYBRID")
    thc_content: float = Field(default=0, description="THC percentage")
    cbd_content: float = Field(default=0, description="CBD percentage")
    price: float = Field(default=0, description="Retail price in `currency`")
    currency: str = Field(..., description="ISO currency code")
    in_stock: bool = Field(default=False, description="Available at any location with stock")
    stock_quantity: int = Field(default=0, description="Stock summed across locations")
    image_url: str | None = Field(default=None, description="Absolute image URL")


def image_host(api_url: str) -> str:
    """Host that serves catalogue images for an API base URL."""
    host = re.sub(r"/api/v1/?$", "", api_url).rstrip("/")
    return host or DEFAULT_IMAGE_HOST


def absolute_image_url(image_url: str | None, host: str) -> str | None:
    if not image_url or image_url.startswith("http"):
        return image_url
    path = image_url if image_url.startswith("/") else f"/{image_url}"
    return f"{host.rstrip('/')}{path}"


def normalize_product(raw: dict[str, Any], country: str, host: str) -> DrGreenProduct:
    """Normalize a raw strain record.

    Args:
        raw: Strain as returned by the API.
        country: Two-letter storefront country; picks the local price.
        host: Image host for relative image paths.

    Returns:
        Normalized product. Unknown raw fields are kept as extras.
    """
    default_currency = currency_for_country(country)

    locations = raw.get("strainLocations") or []
    total_stock = sum(loc.get("stockQuantity") or 0 for loc in locations)
    available = any(loc.get("isAvailable") is True for loc in locations)

    local_price = next(
        (
            p
            for p in raw.get("prices") or []
            if (p.get("currency") or "").lower() == default_currency.lower()
        ),
        None,
    )

    if local_price and local_price.get("retailPrice"):
        price = local_price["retailPrice"]
    else:
        price = raw.get("retailPrice") or 0

    if local_price and local_price.get("currency"):
        currency = local_price["currency"].upper()
    else:
        currency = raw.get("currency") or default_currency

    image_url = absolute_image_url(raw.get("imageUrl"), host)

    return DrGreenProduct(
        **{
            **raw,
            "id": str(raw.get("id", "")),
            "name": raw.get("name") or "",
            "description": raw.get("description") or "",
            "strain_type": (raw.get("type") or "HYBRID").upper(),
            "thc_content": raw.get("thc") or 0,
            "cbd_content": raw.get("cbd") or 0,
            "price": price,
            "currency": currency,
            "in_stock": available and total_stock > 0,
            "stock_quantity": total_stock,
            "image_url": image_url,
            "imageUrl": image_url,
        }
    )


def _unwrap_data(response: Any) -> Any:
    if isinstance(response, dict) and "data" in response:
        return response["data"]
    return response


class DoctorGreenAPI:
    """Endpoint helpers bound to one tenant's credentials.

    Example:
        api = DoctorGreenAPI(client, await resolver.resolve(tenant_id))
        products = await api.fetch_products("PT")
    """

    def __init__(self, client: DrGreenClient, credentials: DrGreenCredentials) -> None:
        self._client = client
        self._credentials = credentials
        self._logger = logger.bind(component="drgreen_api")

    @property
    def api_url(self) -> str:
        return (self._credentials.api_url or self._client.base_url).rstrip("/")

    async def _request(self, endpoint: str, **kwargs: Any) -> Any:
        return await self._client.request(endpoint, self._credentials, **kwargs)

    # Catalogue

    async def fetch_products(self, country: str = DEFAULT_COUNTRY) -> list[DrGreenProduct]:
        """Fetch the strain catalogue for a storefront country."""
        response = await self._request(f"/strains?country={to_alpha3(country)}")
        data = _unwrap_data(response) or {}
        strains = (data.get("strains") or []) if isinstance(data, dict) else []

        host = image_host(self.api_url)
        products = [normalize_product(raw, country, host) for raw in strains]
        self._logger.debug("products_fetched", country=country, count=len(products))
        return products

    async def fetch_product(
        self,
        product_id: str,
        country: str = DEFAULT_COUNTRY,
    ) -> DrGreenProduct:
        """Fetch one strain by ID."""
        response = await self._request(f"/strains/{product_id}")
        raw = _unwrap_data(response)
        if not isinstance(raw, dict):
            raise UpstreamLogicError(f"Product not found: {product_id}", body=response)
        return normalize_product(raw, country, image_host(self.api_url))

    # Clients

    async def verify_nft(self, token_id: str) -> Any:
        return await self._request(f"/nfts/{token_id}/verify")

    async def get_client_by_nft(self, token_id: str) -> Any:
        return await self._request(f"/clients/nft/{token_id}")

    async def fetch_client(self, client_id: str) -> Any:
        return await self._request(f"/clients/{client_id}")

    async def fetch_client_orders(self, client_id: str) -> Any:
        return await self._request(f"/clients/{client_id}/orders")

    async def create_client(self, client_data: dict[str, Any]) -> dict[str, str | None]:
        """Create a patient record.

        The response nests the result either as `{data: {data: {...}}}` or
        `{data: {...}}` depending on the proxy version in front of the API.

        Returns:
            {"clientId": ..., "kycLink": ...}

        Raises:
            UpstreamLogicError: If no client ID comes back.
        """
        payload = {
            key: client_data.get(key)
            for key in (
                "firstName",
                "lastName",
                "email",
                "phoneCode",
                "phoneCountryCode",
                "contactNumber",
                "shipping",
                "medicalRecord",
            )
        }

        response = await self._request("/client", method="POST", body=payload)

        raw = response.get("data") if isinstance(response, dict) else None
        raw = raw if isinstance(raw, dict) else {}
        nested = raw.get("data") if isinstance(raw.get("data"), dict) else raw

        client_id = nested.get("clientId") or raw.get("clientId")
        kyc_link = nested.get("kycLink") or raw.get("kycLink")

        if not client_id:
            self._logger.error("create_client_missing_id")
            raise UpstreamLogicError("Failed to create client: No ID returned", body=response)

        return {"clientId": client_id, "kycLink": kyc_link}

    # Orders and carts

    async def create_order(self, order_data: dict[str, Any]) -> Any:
        return await self._request("/orders", method="POST", body=order_data)

    async def add_to_cart(self, client_id: str, product_id: str, quantity: int) -> Any:
        return await self._request(
            f"/clients/{client_id}/cart",
            method="POST",
            body={"product_id": product_id, "quantity": quantity},
        )

    async def submit_order(self, client_id: str) -> dict[str, Any]:
        """Turn the client's Dr. Green cart into an order.

        Returns:
            The order record (contains at least `id`).

        Raises:
            UpstreamLogicError: If the API reports failure or returns no order ID.
        """
        response = await self._request(
            "/dapp/orders",
            method="POST",
            body={"clientId": client_id},
            validate_success=True,
        )
        order = _unwrap_data(response)
        if not isinstance(order, dict) or not order.get("id"):
            raise UpstreamLogicError("Failed to create order on Dr. Green", body=response)

        self._logger.info("order_submitted", order_id=order["id"])
        return order

    async def get_order(self, order_id: str) -> Any:
        """Fetch an order's current details (payment status sync)."""
        return await self._request(f"/dapp/orders/{order_id}", validate_success=True)

    async def delete_cart(self, cart_id: str) -> Any:
        return await self._request(
            f"/dapp/carts/{cart_id}",
            method="DELETE",
            body={"cartId": cart_id},
            validate_success=True,
        )
