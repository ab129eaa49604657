import base64
import hashlib
import hmac
import json
import logging

from flask import Blueprint, request, jsonify, current_app

from constants import (
    SNAPSHOT_PROPERTY_NAME,
    CATALOG_VARIANT_PROPERTY_NAME,
    BASE_PRODUCT_PROPERTY_NAME,
)
from services.fulfillment import FulfillmentRequest

webhook_bp = Blueprint('webhook', __name__)

logger = logging.getLogger(__name__)

# Shipping address fields forwarded to the partner as the order recipient
RECIPIENT_FIELDS = {
    "name": "name",
    "address1": "address1",
    "address2": "address2",
    "city": "city",
    "province_code": "state_code",
    "country_code": "country_code",
    "zip": "zip",
    "phone": "phone",
}


def verify_shopify_hmac(payload, header_value, secret):
    if not header_value:
        return False
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, header_value)


def _properties(line_item):
    """Storefront line-item properties as a dict (payloads carry [{name, value}])."""
    raw = line_item.get("properties") or []
    if isinstance(raw, dict):
        return dict(raw)
    return {p.get("name"): p.get("value") for p in raw if isinstance(p, dict) and p.get("name")}


def build_recipient(order):
    address = order.get("shipping_address") or {}
    if not address:
        return None
    recipient = {dst: address[src] for src, dst in RECIPIENT_FIELDS.items() if address.get(src)}
    if order.get("email"):
        recipient["email"] = order["email"]
    return recipient


def build_requests(order):
    """One FulfillmentRequest per line item that carries a layout snapshot."""
    recipient = build_recipient(order)
    requests_ = []
    for line_item in order.get("line_items") or []:
        if not isinstance(line_item, dict) or line_item.get("id") is None:
            logger.warning(f"[Webhook] Order {order['id']}: skipping line item without an id")
            continue
        props = _properties(line_item)
        snapshot = props.get(SNAPSHOT_PROPERTY_NAME)
        if not snapshot:
            continue

        hints = {
            "variant_id": props.get(CATALOG_VARIANT_PROPERTY_NAME) or line_item.get("variant_id"),
            "sku": line_item.get("sku"),
            "variant_title": line_item.get("variant_title"),
            "properties": {k: v for k, v in props.items() if not str(k).startswith("_")},
            "base_product_id": props.get(BASE_PRODUCT_PROPERTY_NAME),
        }
        requests_.append(FulfillmentRequest(
            order_id=str(order["id"]),
            line_item_id=str(line_item["id"]),
            raw_snapshot=snapshot,
            variant_hints=hints,
            quantity=int(line_item.get("quantity") or 1),
            recipient=recipient,
        ))
    return requests_


@webhook_bp.route("/webhooks/shopify/orders/created", methods=["POST"])
def shopify_order_created():
    from config import SHOPIFY_WEBHOOK_SECRET

    payload = request.get_data()

    # 1. Validate Signature
    if SHOPIFY_WEBHOOK_SECRET:
        if not verify_shopify_hmac(payload, request.headers.get("X-Shopify-Hmac-Sha256"), SHOPIFY_WEBHOOK_SECRET):
            current_app.logger.warning("[Webhook] Invalid Shopify signature")
            return jsonify({"error": "Invalid signature"}), 401

    try:
        order = json.loads(payload or b"{}")
    except ValueError as e:
        current_app.logger.warning(f"[Webhook] Invalid payload: {e}")
        return jsonify({"error": "Invalid payload"}), 400

    if not isinstance(order, dict) or "id" not in order:
        return jsonify({"error": "Invalid payload"}), 400

    fulfillment_requests = build_requests(order)
    if not fulfillment_requests:
        current_app.logger.info(f"[Webhook] Order {order['id']} has no personalized line items; skipping")
        return jsonify({"status": "skipped", "results": []}), 200

    current_app.logger.info(f"[Webhook] Order {order['id']}: fulfilling {len(fulfillment_requests)} line item(s)")

    # 2. Fulfill every line item concurrently on the shared loop
    ext = current_app.extensions["fulfillment"]
    results = ext["loop"].run(ext["orchestrator"].fulfill_many(fulfillment_requests))
    body = {"status": "processed", "results": [r.to_dict() for r in results]}

    # 3. 5xx on transient failure so the storefront redelivers (runs are idempotent)
    if any(not r.ok and r.retryable for r in results):
        body["status"] = "retry"
        return jsonify(body), 500
    return jsonify(body), 200
