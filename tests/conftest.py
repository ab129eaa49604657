"""
Pytest fixtures for the fulfillment pipeline tests.

Nothing here touches the network: storage is a temp-dir LocalStorage and
the partner / catalog are in-memory fakes from tests/factories.py.
"""
import os
import sys
import tempfile

import pytest

# Set test environment before importing app
_TEST_INSTANCE_DIR = tempfile.mkdtemp(prefix="pod-test-instance-")
os.environ['APP_STAGE'] = 'test'
os.environ['STORAGE_BACKEND'] = 'local'
os.environ['INSTANCE_DIR'] = _TEST_INSTANCE_DIR
os.environ['FONTS_DIR'] = os.path.join(_TEST_INSTANCE_DIR, 'no-fonts')
os.environ['BASE_URL'] = 'http://localhost:8080'
os.environ['SHOPIFY_WEBHOOK_SECRET'] = 'test-webhook-secret'
os.environ.pop('VARIANT_MAPPING_PATH', None)
os.environ.pop('PRINTFUL_AUTO_CONFIRM', None)
os.environ.pop('RUN_STORE_BACKEND', None)

from services.artifacts import ArtifactStore  # noqa: E402
from services.fulfillment import FulfillmentOrchestrator, RetryPolicy  # noqa: E402
from services.fulfillment_runs import InMemoryRunStore  # noqa: E402
from services.print_catalog import LEGACY_SKU_VARIANT_MAP  # noqa: E402
from services.printing.layout_utils import FontRegistry  # noqa: E402
from services.variant_resolver import VariantResolver, default_strategies  # noqa: E402
from utils.storage import LocalStorage  # noqa: E402

from tests.factories import FakeCatalog, FakeProvider, RecordingSleep  # noqa: E402


@pytest.fixture
def fonts(tmp_path):
    """Registry with no font assets: every family falls back to Pillow's bundled font."""
    return FontRegistry(str(tmp_path / "fonts"))


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "artifacts"), "http://localhost:8080/storage")


@pytest.fixture
def artifact_store(storage):
    return ArtifactStore(storage)


@pytest.fixture
def catalog():
    return FakeCatalog.default()


@pytest.fixture
def resolver(catalog):
    return VariantResolver(catalog, default_strategies(LEGACY_SKU_VARIANT_MAP, default_base_product_id=71))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def orchestrator(fonts, artifact_store, resolver, provider, sleep):
    return FulfillmentOrchestrator(
        fonts=fonts,
        artifacts=artifact_store,
        resolver=resolver,
        provider=provider,
        runs=InMemoryRunStore(),
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=8.0),
        sleep=sleep,
    )


@pytest.fixture
def app(orchestrator):
    """Create application for testing."""
    from app import create_app
    flask_app = create_app({'TESTING': True}, orchestrator=orchestrator)
    yield flask_app
    flask_app.extensions["fulfillment"]["loop"].stop()


@pytest.fixture
def client(app):
    """Create a test client for the app."""
    return app.test_client()


@pytest.fixture
def fresh_config():
    """Drop the cached config module before and after a test that re-imports it."""
    def _drop():
        for mod_name in list(sys.modules.keys()):
            if mod_name == 'config' or mod_name.startswith('config.'):
                del sys.modules[mod_name]
    _drop()
    yield
    _drop()
