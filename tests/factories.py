"""
Test builders and fakes for the fulfillment pipeline.

Centralizes snapshot / order payload construction so tests only spell out
the fields they care about.
"""
import copy
import json

from services.errors import CatalogError, SubmissionError
from services.fulfillment_providers import FulfillmentProvider, PartnerSubmission

E2E_ORDER_ID = 7055999999990
E2E_LINE_ITEM_ID = 17499999999990

_BASE_SNAPSHOT = {
    "version": 2,
    "printArea": {"widthIn": 12, "heightIn": 16, "dpi": 300},
    "origin": "top-left",
    "canvasPx": {"w": 600, "h": 600},
    "layers": [
        {
            "type": "text",
            "font": {
                "family": "Yuji Syuku",
                "sizePt": 32,
                "lineHeight": 1.1,
                "letterSpacingEm": 0,
                "vertical": False,
                "textOrientation": "upright",
                "hyphenPolicy": "jp-long-vbar",
            },
            "color": "#000000",
            "align": {"h": "center", "v": "baseline"},
            "textBlocks": [
                {"text": "COMPLETE PIPELINE TEST", "xIn": 6, "yIn": 8, "anchor": "center-baseline"},
            ],
        }
    ],
    "meta": {"baseFontSizeRequested": 40, "orientation": "horizontal"},
}


def make_snapshot(**overrides):
    """
    Valid V2 snapshot (12x16in @ 300 DPI, one horizontal text layer).

    Top-level keys in `overrides` replace the defaults wholesale.
    """
    snapshot = copy.deepcopy(_BASE_SNAPSHOT)
    snapshot.update(copy.deepcopy(overrides))
    return snapshot


def make_layer(text="テスト", vertical=False, **font_overrides):
    layer = copy.deepcopy(_BASE_SNAPSHOT["layers"][0])
    layer["font"]["vertical"] = vertical
    layer["font"].update(font_overrides)
    layer["textBlocks"][0]["text"] = text
    return layer


def make_small_snapshot(text="HELLO", vertical=False):
    """2x2in @ 100 DPI: cheap to rasterize in tests."""
    layer = make_layer(text=text, vertical=vertical)
    layer["textBlocks"][0].update({"xIn": 1, "yIn": 1})
    return make_snapshot(
        printArea={"widthIn": 2, "heightIn": 2, "dpi": 100},
        canvasPx={"w": 200, "h": 200},
        layers=[layer],
    )


def make_line_item(line_item_id=E2E_LINE_ITEM_ID, snapshot=None, extra_properties=None, **fields):
    properties = [{"name": "_layout_snapshot_v2", "value": json.dumps(snapshot or make_small_snapshot())}]
    for name, value in (extra_properties or {}).items():
        properties.append({"name": name, "value": value})
    item = {
        "id": line_item_id,
        "variant_id": 17008,
        "sku": "17008_Black",
        "variant_title": "Black / S",
        "quantity": 1,
        "properties": properties,
    }
    item.update(fields)
    return item


def make_order_payload(order_id=E2E_ORDER_ID, line_items=None):
    return {
        "id": order_id,
        "email": "buyer@example.com",
        "shipping_address": {
            "name": "Test Buyer",
            "address1": "1 Main St",
            "city": "Austin",
            "province_code": "TX",
            "country_code": "US",
            "zip": "78701",
        },
        "line_items": line_items if line_items is not None else [make_line_item()],
    }


class FakeCatalog:
    """In-memory catalog. `errors` maps a variant/product ID to an exception to raise."""

    def __init__(self, variants=None, products=None, errors=None):
        self.variants = dict(variants or {})
        self.products = dict(products or {})
        self.errors = dict(errors or {})
        self.variant_calls = []
        self.product_calls = []

    @classmethod
    def default(cls):
        black = [
            {"id": 3990245, "color": "Black", "size": "S"},
            {"id": 3990246, "color": "Black", "size": "M"},
        ]
        heather = [{"id": 4100, "color": "Heather Grey", "size": "XL"}]
        variants = {v["id"]: v for v in black + heather}
        variants[17008] = {"id": 17008, "color": "Black", "size": "S"}
        return cls(variants=variants, products={71: black + heather})

    def get_variant(self, variant_id):
        self.variant_calls.append(variant_id)
        if variant_id in self.errors:
            raise self.errors[variant_id]
        return self.variants.get(variant_id)

    def get_product_variants(self, product_id):
        self.product_calls.append(product_id)
        if product_id in self.errors:
            raise self.errors[product_id]
        return list(self.products.get(product_id, []))


class FakeProvider(FulfillmentProvider):
    """
    Records partner calls. `submit_failures` / `confirm_failures` are raised,
    in order, before calls start succeeding.
    """

    def __init__(self, submit_failures=None, confirm_failures=None):
        self.submissions = []
        self.confirmations = []
        self.cancelled = []
        self.submit_failures = list(submit_failures or [])
        self.confirm_failures = list(confirm_failures or [])
        self._next_order_id = 9000

    def submit_line_item(self, order_id, line_item_id, variant_id, file_url, quantity=1, recipient=None):
        if self.submit_failures:
            raise self.submit_failures.pop(0)
        self.submissions.append({
            "order_id": order_id,
            "line_item_id": line_item_id,
            "variant_id": variant_id,
            "file_url": file_url,
            "quantity": quantity,
            "recipient": recipient,
        })
        self._next_order_id += 1
        return PartnerSubmission(partner_order_id=self._next_order_id, partner_item_id=1, status="draft")

    def confirm(self, partner_order_id):
        if self.confirm_failures:
            raise self.confirm_failures.pop(0)
        self.confirmations.append(partner_order_id)
        return {"id": partner_order_id, "status": "draft"}

    def cancel_order(self, partner_order_id):
        self.cancelled.append(partner_order_id)
        return True


class RecordingSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FlakyStorage:
    """Wraps a backend; the first `failures` puts raise OSError."""

    def __init__(self, backend, failures):
        self.backend = backend
        self.failures = failures
        self.put_calls = 0

    def exists(self, key):
        return self.backend.exists(key)

    def public_url(self, key):
        return self.backend.public_url(key)

    def put(self, key, data, **kwargs):
        self.put_calls += 1
        if self.put_calls <= self.failures:
            raise OSError("simulated storage outage")
        return self.backend.put(key, data, **kwargs)


def partner_unavailable(message="Printful unavailable"):
    return SubmissionError(message, kind="partner-unavailable", retryable=True, status=503)


def partner_rejected(message="Invalid recipient", kind="rejected"):
    return SubmissionError(message, kind=kind, retryable=False, status=400)


def catalog_unavailable():
    return CatalogError("Catalog lookup for variant failed: timeout", retryable=True)
