"""
Artifact Store: content-addressed persistence of print-ready PNGs.

Key: orders/order-<orderId>-item-<lineItemId>/<md5[:8]>/print.png

The key is a pure function of the order line and the bytes, so re-rendering
an unchanged snapshot lands on the same object and the upload is skipped.
"""
import hashlib
import logging
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from constants import (
    PRINT_KEY_TEMPLATE,
    PRINT_CONTENT_TYPE,
    PRINT_CACHE_CONTROL,
    CONTENT_HASH_LENGTH,
)
from services.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredArtifact:
    key: str
    public_url: str
    content_hash: str
    size: int
    reused: bool = False


def content_hash(data):
    return hashlib.md5(data).hexdigest()


def artifact_key(order_id, line_item_id, data):
    return PRINT_KEY_TEMPLATE.format(
        order_id=order_id,
        line_item_id=line_item_id,
        content_hash=content_hash(data)[:CONTENT_HASH_LENGTH],
    )


class ArtifactStore:
    def __init__(self, backend):
        self.backend = backend

    def store(self, data, order_id, line_item_id):
        """
        Persist PNG bytes for an order line.

        Raises:
            StorageError: backend unavailable (retryable)
        """
        digest = content_hash(data)
        key = artifact_key(order_id, line_item_id, data)
        log_extra = {"order_id": order_id, "line_item_id": line_item_id, "stage": "storage"}

        try:
            if self.backend.exists(key):
                logger.info(f"[Storage] Reusing existing artifact {key}", extra=log_extra)
                return StoredArtifact(
                    key=key,
                    public_url=self.backend.public_url(key),
                    content_hash=digest,
                    size=len(data),
                    reused=True,
                )

            url = self.backend.put(
                key,
                data,
                content_type=PRINT_CONTENT_TYPE,
                cache_control=PRINT_CACHE_CONTROL,
                metadata={
                    "type": "print-file",
                    "size": str(len(data)),
                    "order-id": str(order_id),
                    "line-item-id": str(line_item_id),
                },
            )
        except (OSError, BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not store artifact {key}: {e}", context=log_extra) from e

        logger.info(f"[Storage] Uploaded {key} ({len(data)} bytes)", extra=log_extra)
        return StoredArtifact(key=key, public_url=url, content_hash=digest, size=len(data))
