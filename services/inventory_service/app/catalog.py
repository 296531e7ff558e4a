"""Existence checks against the catalog service."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .errors import CatalogUnavailable, NotFound

_LOGGER = logging.getLogger(__name__)


class CatalogClient(Protocol):
    async def product_exists(self, product_id: int) -> bool: ...

    async def variant_exists(self, variant_id: int) -> bool: ...


class PermissiveCatalog:
    """Accepts every product and variant; used when no catalog URL is configured."""

    async def product_exists(self, product_id: int) -> bool:
        return True

    async def variant_exists(self, variant_id: int) -> bool:
        return True


class HttpCatalogClient:
    """Asks the catalog service whether products and variants exist."""

    def __init__(self, *, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    async def product_exists(self, product_id: int) -> bool:
        return await self._exists(f"/products/{product_id}")

    async def variant_exists(self, variant_id: int) -> bool:
        return await self._exists(f"/products/variants/{variant_id}")

    async def _exists(self, path: str) -> bool:
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            _LOGGER.warning("Catalog lookup %s failed: %s", url, exc)
            raise CatalogUnavailable("catalog service is unreachable") from exc
        if response.status_code == httpx.codes.NOT_FOUND:
            return False
        if response.is_success:
            return True
        _LOGGER.warning("Catalog lookup %s answered %s", url, response.status_code)
        raise CatalogUnavailable(f"catalog service answered {response.status_code}")


async def ensure_target_exists(catalog: CatalogClient, product_id: int, variant_id: int | None) -> None:
    """Raise ``NotFound`` unless the catalog knows the product (and variant)."""

    if not await catalog.product_exists(product_id):
        raise NotFound(f"product {product_id} not found")
    if variant_id is not None and not await catalog.variant_exists(variant_id):
        raise NotFound(f"product variant {variant_id} not found")
