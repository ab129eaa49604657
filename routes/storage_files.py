"""
Development download route for print files kept in LocalStorage.

The partner needs a URL to fetch each print file from. With S3 that is the
bucket; locally this blueprint plays that role. It answers 404 for
everything unless STORAGE_BACKEND is 'local' and the stage is not
production.
"""
from flask import Blueprint, abort, send_file

from constants import PRINT_CONTENT_TYPE, PRINT_CACHE_CONTROL

storage_files_bp = Blueprint('storage_files', __name__)


def _local_serving_enabled():
    from config import STORAGE_BACKEND, IS_PRODUCTION
    return STORAGE_BACKEND == 'local' and not IS_PRODUCTION


@storage_files_bp.route('/storage/<path:key>')
def serve_print_file(key):
    # Run records live in the same storage and are never served
    if not _local_serving_enabled() or not key.endswith('/print.png'):
        abort(404)

    from utils.storage import get_storage

    storage = get_storage()
    try:
        found = storage.exists(key)
    except ValueError:
        # Key escapes the storage root
        abort(404)
    if not found:
        abort(404)

    response = send_file(storage.get_file(key), mimetype=PRINT_CONTENT_TYPE)
    response.headers['Cache-Control'] = PRINT_CACHE_CONTROL
    return response
