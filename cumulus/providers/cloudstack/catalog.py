"""Compute offering catalog with a per-endpoint, per-architecture cache."""

from __future__ import annotations

import threading
from collections.abc import Callable
from xml.etree.ElementTree import Element

from loguru import logger

from cumulus.core.exceptions import ConfigurationError
from cumulus.providers.cloudstack.client import CloudStackClient
from cumulus.providers.cloudstack.config import CloudStackContext
from cumulus.providers.cloudstack.mappings import MappingOverrides
from cumulus.types.instance import Architecture
from cumulus.types.product import ProductOffering

type Products = tuple[ProductOffering, ...]


class ProductCache:
    """Offerings keyed by (endpoint, architecture), kept until invalidated.

    Population is single-flight per key: concurrent callers missing the same
    key wait for one fetch instead of issuing their own. A failed fetch
    caches nothing.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[Architecture, Products]] = {}
        self._locks: dict[tuple[str, Architecture], threading.Lock] = {}
        self._guard = threading.Lock()
        self._log = logger.bind(component="cache", namespace="products")

    def get(self, endpoint: str, architecture: Architecture) -> Products | None:
        return self._entries.get(endpoint, {}).get(architecture)

    def _lock_for(self, key: tuple[str, Architecture]) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def get_or_fetch(
        self,
        endpoint: str,
        architecture: Architecture,
        fetch: Callable[[], Products],
    ) -> Products:
        if (hit := self.get(endpoint, architecture)) is not None:
            self._log.debug("Cache hit {endpoint}/{arch}", endpoint=endpoint, arch=architecture)
            return hit

        with self._lock_for((endpoint, architecture)):
            if (hit := self.get(endpoint, architecture)) is not None:
                return hit
            self._log.debug("Cache miss {endpoint}/{arch}", endpoint=endpoint, arch=architecture)
            products = fetch()
            with self._guard:
                self._entries.setdefault(endpoint, {})[architecture] = products
            return products

    def invalidate(self, endpoint: str | None = None) -> None:
        """Drop cached offerings for one endpoint, or for all of them."""
        with self._guard:
            if endpoint is None:
                self._entries.clear()
            else:
                self._entries.pop(endpoint, None)


_default_cache = ProductCache()


def default_cache() -> ProductCache:
    """Process-wide cache shared by every catalog that is not given its own."""
    return _default_cache


def _int(node: Element, tag: str) -> int:
    text = (node.findtext(tag) or "").strip()
    return int(text) if text else 0


def parse_offering(node: Element) -> ProductOffering | None:
    offering_id = (node.findtext("id") or "").strip()
    if not offering_id:
        return None
    name = node.findtext("name")
    return ProductOffering.from_offering(
        offering_id,
        name.strip() if name is not None else offering_id,
        cpu=_int(node, "cpunumber"),
        ram_mb=_int(node, "memory"),
    )


class ProductCatalog:
    """Lists and looks up the offerings of the caller's region.

    Example:
        catalog = ProductCatalog(client, context, overrides)
        small = catalog.get_product("8b1b4f0c-small")
    """

    def __init__(
        self,
        client: CloudStackClient,
        context: CloudStackContext | None,
        overrides: MappingOverrides,
        cache: ProductCache | None = None,
    ) -> None:
        self._client = client
        self._context = context
        self._overrides = overrides
        self._cache = cache or default_cache()
        self._log = logger.bind(provider="cloudstack", component="catalog")

    def list_products(self, architecture: Architecture) -> Products:
        if self._context is None:
            raise ConfigurationError("No context was configured for this request")
        context = self._context
        return self._cache.get_or_fetch(
            context.endpoint, architecture, lambda: self._fetch(context)
        )

    def _fetch(self, context: CloudStackContext) -> Products:
        region_id = context.require_region()
        allowed = self._overrides.allowed_products(context.endpoint, region_id)
        offerings = [
            offering
            for node in self._client.list_service_offerings(region_id)
            if (offering := parse_offering(node)) is not None
            and (allowed is None or offering.id in allowed)
        ]
        self._log.debug(
            "Fetched {n} offerings for {region}", n=len(offerings), region=region_id,
        )
        return tuple(offerings)

    def get_product(self, product_id: str) -> ProductOffering | None:
        for architecture in Architecture:
            for product in self.list_products(architecture):
                if product.id == product_id:
                    return product
        self._log.debug("Unknown product ID: {product_id}", product_id=product_id)
        return None

    def invalidate(self) -> None:
        if self._context is not None:
            self._cache.invalidate(self._context.endpoint)
