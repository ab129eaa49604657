"""
Printful client, catalog adapter and provider tests.

The HTTP session is a MagicMock; no request leaves the process.
"""
from unittest.mock import MagicMock

import pytest
import requests

from services.errors import CatalogError, SubmissionError
from services.fulfillment_providers.printful import (
    PrintfulAPIError,
    PrintfulCatalog,
    PrintfulClient,
    PrintfulProvider,
)


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.reason = "Reason"
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload
    return resp


def _client(*responses):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return PrintfulClient("pf-key", store_id="123", base_url="https://api.example.com/", timeout=5, session=session), session


class TestPrintfulClient:

    def test_auth_headers_and_result_unwrapping(self):
        client, session = _client(_response(200, {"code": 200, "result": {"id": 1, "status": "draft"}}))

        order = client.get_order(1)

        assert order == {"id": 1, "status": "draft"}
        assert session.headers["Authorization"] == "Bearer pf-key"
        assert session.headers["X-PF-Store-Id"] == "123"
        session.request.assert_called_once_with(
            "GET", "https://api.example.com/orders/1", params=None, json=None, timeout=5,
        )

    def test_error_carries_partner_message(self):
        client, _ = _client(_response(400, {"code": 400, "error": {"reason": "BadRequest", "message": "Recipient: Missing zip"}}))

        with pytest.raises(PrintfulAPIError) as exc_info:
            client.create_order({"external_id": "1"})

        err = exc_info.value
        assert err.status == 400
        assert err.message == "Recipient: Missing zip"
        assert err.retryable is False

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_throttling_and_server_errors_are_retryable(self, status):
        client, _ = _client(_response(status, {"code": status, "result": "busy"}))
        with pytest.raises(PrintfulAPIError) as exc_info:
            client.get_order(1)
        assert exc_info.value.retryable is True

    def test_network_error_is_retryable(self):
        client, session = _client()
        session.request.side_effect = requests.ConnectionError("connection reset")

        with pytest.raises(PrintfulAPIError) as exc_info:
            client.get_order(1)

        assert exc_info.value.status is None
        assert exc_info.value.retryable is True

    def test_order_by_external_id_missing_returns_none(self):
        client, session = _client(_response(404, {"code": 404, "error": {"message": "Order not found"}}))

        assert client.get_order_by_external_id("7055") is None
        assert session.request.call_args[0][1] == "https://api.example.com/orders/@7055"

    def test_catalog_variant_limit_capped(self):
        client, session = _client(_response(200, {"result": {"variants": [], "paging": {"total": 0}}}))

        client.list_catalog_variants(sku="17008_Black", limit=500)

        assert session.request.call_args.kwargs["params"] == {"limit": 100, "offset": 0, "sku": "17008_Black"}

    def test_iter_catalog_variants_pages(self):
        client, session = _client(
            _response(200, {"result": {"variants": [{"id": 1}, {"id": 2}], "paging": {"total": 3}}}),
            _response(200, {"result": {"variants": [{"id": 3}], "paging": {"total": 3}}}),
        )

        ids = [v["id"] for v in client.iter_catalog_variants(search="tee", page_size=2)]

        assert ids == [1, 2, 3]
        offsets = [c.kwargs["params"]["offset"] for c in session.request.call_args_list]
        assert offsets == [0, 2]

    def test_endpoints(self):
        client, session = _client(*[_response(200, {"result": {}}) for _ in range(6)])

        client.confirm_order(5)
        client.cancel_order(5)
        client.add_order_item(5, {"variant_id": 1})
        client.remove_order_item(5, 9)
        client.get_catalog_variant(3990245)
        client.get_catalog_product(71)

        calls = [(c.args[0], c.args[1].replace("https://api.example.com", "")) for c in session.request.call_args_list]
        assert calls == [
            ("POST", "/orders/5/confirm"),
            ("DELETE", "/orders/5"),
            ("POST", "/orders/5/items"),
            ("DELETE", "/orders/5/items/9"),
            ("GET", "/products/variant/3990245"),
            ("GET", "/products/71"),
        ]


class TestPrintfulCatalog:

    def test_variant_found(self):
        client = MagicMock()
        client.get_catalog_variant.return_value = {"variant": {"id": 17008}, "product": {"id": 71}}
        assert PrintfulCatalog(client).get_variant(17008) == {"id": 17008}

    def test_not_found_is_a_miss(self):
        client = MagicMock()
        client.get_catalog_variant.side_effect = PrintfulAPIError(404, "Not found")
        client.get_catalog_product.side_effect = PrintfulAPIError(404, "Not found")

        catalog = PrintfulCatalog(client)
        assert catalog.get_variant(1) is None
        assert catalog.get_product_variants(1) == []

    def test_transient_failure_raises_retryable_catalog_error(self):
        client = MagicMock()
        client.get_catalog_variant.side_effect = PrintfulAPIError(503, "Service unavailable", retryable=True)

        with pytest.raises(CatalogError) as exc_info:
            PrintfulCatalog(client).get_variant(1)
        assert exc_info.value.retryable is True


class TestPrintfulProvider:

    def _provider(self, existing_order=None, auto_confirm=False):
        client = MagicMock()
        client.get_order_by_external_id.return_value = existing_order
        client.create_order.return_value = {"id": 555, "status": "draft", "items": []}
        client.add_order_item.return_value = {"id": 42}
        return PrintfulProvider(client, auto_confirm=auto_confirm), client

    def test_creates_draft_and_adds_item(self):
        provider, client = self._provider()

        submission = provider.submit_line_item(7055, 1749, 3990245, "https://cdn/print.png", quantity=2,
                                               recipient={"name": "Buyer"})

        client.create_order.assert_called_once_with(
            {"external_id": "7055", "shipping": "STANDARD", "recipient": {"name": "Buyer"}}
        )
        client.add_order_item.assert_called_once_with(555, {
            "variant_id": 3990245,
            "quantity": 2,
            "files": [{"type": "default", "url": "https://cdn/print.png"}],
            "external_id": "1749",
        })
        assert submission.partner_order_id == 555
        assert submission.partner_item_id == 42
        assert submission.reused is False

    def test_identical_item_is_reused(self):
        order = {"id": 555, "status": "draft", "items": [
            {"id": 42, "external_id": "1749", "variant_id": 3990245, "files": [{"url": "https://cdn/print.png"}]},
        ]}
        provider, client = self._provider(existing_order=order)

        submission = provider.submit_line_item(7055, 1749, 3990245, "https://cdn/print.png")

        client.create_order.assert_not_called()
        client.add_order_item.assert_not_called()
        assert submission.reused is True
        assert submission.partner_item_id == 42

    def test_item_with_changed_file_is_replaced(self):
        order = {"id": 555, "status": "draft", "items": [
            {"id": 42, "external_id": "1749", "variant_id": 3990245, "files": [{"url": "https://cdn/old.png"}]},
        ]}
        provider, client = self._provider(existing_order=order)

        provider.submit_line_item(7055, 1749, 3990245, "https://cdn/new.png")

        client.remove_order_item.assert_called_once_with(555, 42)
        client.add_order_item.assert_called_once()

    def test_non_draft_order_gets_line_specific_draft(self):
        provider, client = self._provider()
        client.get_order_by_external_id.side_effect = [{"id": 1, "status": "pending", "items": []}, None]

        provider.submit_line_item(7055, 1749, 3990245, "https://cdn/print.png")

        assert client.create_order.call_args[0][0]["external_id"] == "7055-1749"

    def test_transient_failure_maps_to_partner_unavailable(self):
        provider, client = self._provider()
        client.get_order_by_external_id.side_effect = PrintfulAPIError(None, "timeout", retryable=True)

        with pytest.raises(SubmissionError) as exc_info:
            provider.submit_line_item(7055, 1749, 3990245, "https://cdn/print.png")

        assert exc_info.value.kind == "partner-unavailable"
        assert exc_info.value.retryable is True

    def test_variant_rejection_maps_to_variant_mismatch(self):
        provider, client = self._provider()
        client.add_order_item.side_effect = PrintfulAPIError(400, "Item 0: Variant 3990245 is discontinued")

        with pytest.raises(SubmissionError) as exc_info:
            provider.submit_line_item(7055, 1749, 3990245, "https://cdn/print.png")

        assert exc_info.value.kind == "variant-mismatch"
        assert exc_info.value.retryable is False
        assert exc_info.value.status == 400

    def test_other_rejection_is_terminal(self):
        provider, client = self._provider()
        client.create_order.side_effect = PrintfulAPIError(400, "Recipient: Missing zip")

        with pytest.raises(SubmissionError) as exc_info:
            provider.submit_line_item(7055, 1749, 3990245, "https://cdn/print.png")

        assert exc_info.value.kind == "rejected"
        assert "Missing zip" in exc_info.value.message

    def test_confirm_reads_back_when_auto_confirm_disabled(self):
        provider, client = self._provider()
        client.get_order.return_value = {"id": 555, "status": "draft"}

        assert provider.confirm(555) == {"id": 555, "status": "draft"}
        client.confirm_order.assert_not_called()

    def test_confirm_calls_partner_when_enabled(self):
        provider, client = self._provider(auto_confirm=True)
        client.confirm_order.return_value = {"id": 555, "status": "pending"}

        assert provider.confirm(555)["status"] == "pending"
        client.confirm_order.assert_called_once_with(555)

    @pytest.mark.parametrize("auto_confirm", [False, True])
    def test_confirm_tolerates_empty_result(self, auto_confirm):
        provider, client = self._provider(auto_confirm=auto_confirm)
        client.get_order.return_value = None
        client.confirm_order.return_value = None

        assert provider.confirm(555) == {"id": 555}
