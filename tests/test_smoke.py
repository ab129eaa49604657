import json
import logging

from tests.factories import make_small_snapshot


def test_ping(client):
    """Smoke Test: Application boots and answers health checks."""
    response = client.get('/ping')
    assert response.status_code == 200
    assert response.json == {'status': 'ok'}


def test_local_print_files_are_served(client):
    """Smoke Test: a stored print file is downloadable from the dev storage route."""
    from utils.storage import get_storage

    storage = get_storage()
    storage.put('orders/order-smoke-item-1/abcdef12/print.png', b'\x89PNG fake', content_type='image/png')

    response = client.get('/storage/orders/order-smoke-item-1/abcdef12/print.png')
    assert response.status_code == 200
    assert response.mimetype == 'image/png'
    assert response.data == b'\x89PNG fake'


def test_storage_route_rejects_traversal_and_missing(client):
    assert client.get('/storage/../config.py').status_code == 404
    assert client.get('/storage/orders/nope/print.png').status_code == 404


def test_render_pipeline_produces_png(fonts):
    """Smoke Test: validate, lay out and rasterize a snapshot end to end."""
    from services.printing.layout import layout_snapshot
    from services.printing.rasterizer import Rasterizer
    from services.printing.validation import parse_snapshot

    snapshot = parse_snapshot(json.dumps(make_small_snapshot("OK")))
    png = Rasterizer(fonts).render_layout(layout_snapshot(snapshot, fonts))
    assert png.startswith(b'\x89PNG')


def test_json_formatter_carries_run_context():
    from utils.logger import JSONFormatter

    record = logging.LogRecord('services.fulfillment', logging.INFO, __file__, 1, 'stored', None, None)
    record.order_id = 'o-1'
    record.line_item_id = 'li-1'
    record.stage = 'storage'

    payload = json.loads(JSONFormatter().format(record))
    assert payload['message'] == 'stored'
    assert payload['order_id'] == 'o-1'
    assert payload['line_item_id'] == 'li-1'
    assert payload['stage'] == 'storage'
    assert 'event' not in payload


def test_healthz_reports_font_state(client):
    response = client.get('/healthz')
    assert response.status_code == 200
    body = response.json
    assert body['status'] == 'ok'
    assert body['fonts']['families'] == []
    assert body['fonts']['fallbackAvailable'] is False
    assert body['runs'] == 0


def test_storage_route_only_serves_print_files(client):
    from utils.storage import get_storage

    get_storage().put('runs/order-smoke-item-1.json', b'{"state": "confirmed"}', content_type='application/json')

    assert client.get('/storage/runs/order-smoke-item-1.json').status_code == 404
