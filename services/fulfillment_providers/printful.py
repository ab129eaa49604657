"""
Printful integration.

PrintfulClient is a thin requests wrapper over the v1 REST API. Every
failure surfaces as PrintfulAPIError with the HTTP status, the partner's
own error text and whether a retry can help. PrintfulProvider and
PrintfulCatalog turn those into pipeline errors.
"""
import logging

import requests

from constants import PRINTFUL_MAX_PAGE_LIMIT, PRINTFUL_DRAFT_STATUS
from services.errors import CatalogError, SubmissionError
from . import FulfillmentProvider, PartnerSubmission

logger = logging.getLogger(__name__)

USER_AGENT = "pod-fulfillment/1.0"


class PrintfulAPIError(Exception):
    def __init__(self, status, message, retryable=False):
        self.status = status
        self.message = message
        self.retryable = retryable
        super().__init__(f"[{status}] {message}" if status else message)

    @property
    def not_found(self):
        return self.status == 404


def _is_retryable_status(status):
    return status == 429 or status >= 500


def _error_message(payload, fallback):
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(payload.get("result"), str) and payload["result"]:
            return payload["result"]
    return fallback


class PrintfulClient:
    def __init__(self, api_key, store_id=None, base_url="https://api.printful.com", timeout=45.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        })
        if store_id:
            self.session.headers["X-PF-Store-Id"] = str(store_id)

    def _request(self, method, endpoint, params=None, json_body=None):
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"[Printful] {method} {endpoint}")
        try:
            resp = self.session.request(method, url, params=params, json=json_body, timeout=self.timeout)
        except requests.RequestException as e:
            raise PrintfulAPIError(None, f"Printful {method} {endpoint} failed: {e}", retryable=True) from e

        try:
            payload = resp.json() if resp.content else {}
        except ValueError:
            payload = {}

        if resp.status_code >= 400:
            message = _error_message(payload, resp.reason or "unknown error")
            logger.warning(f"[Printful] {resp.status_code} {method} {endpoint}: {message}")
            raise PrintfulAPIError(resp.status_code, message, retryable=_is_retryable_status(resp.status_code))

        return payload.get("result") if isinstance(payload, dict) else payload

    # --- Orders ---

    def get_order(self, order_id):
        return self._request("GET", f"/orders/{order_id}")

    def get_order_by_external_id(self, external_id):
        """Order with the given external ID, or None."""
        try:
            return self._request("GET", f"/orders/@{external_id}")
        except PrintfulAPIError as e:
            if e.not_found:
                return None
            raise

    def create_order(self, order_data):
        return self._request("POST", "/orders", json_body=order_data)

    def confirm_order(self, order_id):
        return self._request("POST", f"/orders/{order_id}/confirm")

    def cancel_order(self, order_id):
        return self._request("DELETE", f"/orders/{order_id}")

    def add_order_item(self, order_id, item_data):
        return self._request("POST", f"/orders/{order_id}/items", json_body=item_data)

    def remove_order_item(self, order_id, item_id):
        return self._request("DELETE", f"/orders/{order_id}/items/{item_id}")

    # --- Catalog ---

    def get_catalog_variant(self, variant_id):
        """{"variant": {...}, "product": {...}} for a catalog variant ID."""
        return self._request("GET", f"/products/variant/{variant_id}")

    def get_catalog_product(self, product_id):
        """{"product": {...}, "variants": [...]} for a catalog product ID."""
        return self._request("GET", f"/products/{product_id}")

    def list_catalog_variants(self, sku=None, search=None, limit=20, offset=0):
        params = {"limit": min(limit or 20, PRINTFUL_MAX_PAGE_LIMIT), "offset": offset}
        if sku:
            params["sku"] = sku
        if search:
            params["search"] = search
        return self._request("GET", "/catalog/variants", params=params)

    def iter_catalog_variants(self, sku=None, search=None, page_size=PRINTFUL_MAX_PAGE_LIMIT):
        offset = 0
        while True:
            page = self.list_catalog_variants(sku=sku, search=search, limit=page_size, offset=offset) or {}
            variants = page.get("variants") or []
            yield from variants

            total = (page.get("paging") or {}).get("total", 0)
            offset += len(variants)
            if not variants or offset >= total:
                return


class PrintfulCatalog:
    """
    Catalog view used by the variant resolver.

    A 404 is a miss (None / empty list). Anything else is a CatalogError
    that carries the partner's retryability.
    """

    def __init__(self, client):
        self.client = client

    def _raise(self, what, e):
        raise CatalogError(
            f"Catalog lookup for {what} failed: {e.message}",
            kind="catalog-unavailable" if e.retryable else "catalog-rejected",
            retryable=e.retryable,
        ) from e

    def get_variant(self, variant_id):
        try:
            result = self.client.get_catalog_variant(variant_id)
        except PrintfulAPIError as e:
            if e.not_found:
                return None
            self._raise(f"variant {variant_id}", e)
        variant = (result or {}).get("variant")
        return variant or None

    def get_product_variants(self, product_id):
        try:
            result = self.client.get_catalog_product(product_id)
        except PrintfulAPIError as e:
            if e.not_found:
                return []
            self._raise(f"product {product_id}", e)
        return (result or {}).get("variants") or []


class PrintfulProvider(FulfillmentProvider):
    """
    Printful POD integration.

    One partner order per storefront order (external_id = order ID), one
    order item per line item (external_id = line item ID). Orders stay
    drafts unless auto_confirm is enabled.
    """

    def __init__(self, client, shipping_method="STANDARD", auto_confirm=False):
        self.client = client
        self.shipping_method = shipping_method
        self.auto_confirm = auto_confirm

    def _submission_error(self, action, e, variant_id=None):
        if e.retryable:
            kind = "partner-unavailable"
        elif variant_id is not None and "variant" in (e.message or "").lower():
            kind = "variant-mismatch"
        else:
            kind = "rejected"
        return SubmissionError(
            f"Printful {action} failed: {e.message}",
            kind=kind,
            retryable=e.retryable,
            status=e.status,
        )

    def _create_draft(self, external_id, recipient):
        order_data = {"external_id": external_id, "shipping": self.shipping_method}
        if recipient:
            order_data["recipient"] = recipient
        order = self.client.create_order(order_data)
        logger.info(f"[Printful] Created draft order {order.get('id')} (external_id={external_id})")
        return order

    def ensure_draft_order(self, order_id, line_item_id, recipient=None):
        external_id = str(order_id)
        order = self.client.get_order_by_external_id(external_id)

        if order is None:
            return self._create_draft(external_id, recipient)

        if order.get("status") != PRINTFUL_DRAFT_STATUS:
            # Order already left draft; park this line on its own draft
            logger.warning(
                f"[Printful] Order {order.get('id')} is {order.get('status')!r}, not draft. "
                f"Using a dedicated draft for line item {line_item_id}"
            )
            line_external_id = f"{order_id}-{line_item_id}"
            existing = self.client.get_order_by_external_id(line_external_id)
            if existing is not None and existing.get("status") == PRINTFUL_DRAFT_STATUS:
                return existing
            return self._create_draft(line_external_id, recipient)

        return order

    def upsert_item(self, order, line_item_id, variant_id, file_url, quantity):
        """
        Add the line item, reuse an identical one, or replace one whose file changed.
        Returns (item, reused).
        """
        external_id = str(line_item_id)
        for item in order.get("items") or []:
            if str(item.get("external_id")) != external_id:
                continue
            urls = {f.get("url") for f in item.get("files") or []}
            if file_url in urls and item.get("variant_id") == variant_id:
                logger.info(f"[Printful] Reusing item {item.get('id')} in order {order['id']}")
                return item, True
            logger.info(f"[Printful] Replacing stale item {item.get('id')} in order {order['id']}")
            self.client.remove_order_item(order["id"], item["id"])

        item = self.client.add_order_item(order["id"], {
            "variant_id": variant_id,
            "quantity": quantity,
            "files": [{"type": "default", "url": file_url}],
            "external_id": external_id,
        })
        return item, False

    def submit_line_item(self, order_id, line_item_id, variant_id, file_url, quantity=1, recipient=None):
        try:
            order = self.ensure_draft_order(order_id, line_item_id, recipient)
        except PrintfulAPIError as e:
            raise self._submission_error("draft order", e) from e

        try:
            item, reused = self.upsert_item(order, line_item_id, variant_id, file_url, quantity)
        except PrintfulAPIError as e:
            raise self._submission_error("add item", e, variant_id=variant_id) from e

        return PartnerSubmission(
            partner_order_id=order["id"],
            partner_item_id=(item or {}).get("id"),
            status=order.get("status", PRINTFUL_DRAFT_STATUS),
            reused=reused,
        )

    def confirm(self, partner_order_id):
        try:
            if self.auto_confirm:
                order = self.client.confirm_order(partner_order_id)
                logger.info(f"[Printful] Confirmed order {partner_order_id}")
            else:
                order = self.client.get_order(partner_order_id) or {}
                logger.info(f"[Printful] Auto-confirm disabled; order {partner_order_id} left as {order.get('status')!r}")
        except PrintfulAPIError as e:
            raise self._submission_error("confirm", e) from e

        if not order:
            logger.warning(f"[Printful] Empty order body for {partner_order_id}; keeping the reference only")
            order = {"id": partner_order_id}
        return order

    def cancel_order(self, partner_order_id):
        try:
            self.client.cancel_order(partner_order_id)
        except PrintfulAPIError as e:
            logger.error(f"[Printful] Cancel of order {partner_order_id} failed: {e}")
            return False
        return True
