"""
Legacy SKU table, mapping file and catalog matching helpers.
"""
import json

import pytest

from services.print_catalog import (
    LEGACY_SKU_VARIANT_MAP,
    find_variant_id,
    load_variant_mapping,
    normalize_color,
    normalize_size,
    parse_variant_title,
)


def test_builtin_table_has_legacy_black_tee():
    assert LEGACY_SKU_VARIANT_MAP["17008_Black"] == 3990245


def test_no_path_returns_builtin_table():
    assert load_variant_mapping(None) == LEGACY_SKU_VARIANT_MAP


def test_mapping_file_extends_and_overrides(tmp_path):
    path = tmp_path / "preset-mapping.json"
    path.write_text(json.dumps({
        "shopify_to_printful_variants": {
            "_comment": "annotations are skipped",
            "comment_2": "so is this",
            "20001_Navy_L": "5000123",
            "17008_White": 4999,
            "bad": "n/a",
        }
    }))

    mapping = load_variant_mapping(str(path))

    assert mapping["20001_Navy_L"] == 5000123
    assert mapping["17008_White"] == 4999
    assert mapping["17008_Black"] == 3990245
    assert "_comment" not in mapping
    assert "comment_2" not in mapping
    assert "bad" not in mapping


def test_missing_or_malformed_file_keeps_builtin(tmp_path):
    assert load_variant_mapping(str(tmp_path / "nope.json")) == LEGACY_SKU_VARIANT_MAP

    broken = tmp_path / "broken.json"
    broken.write_text("{")
    assert load_variant_mapping(str(broken)) == LEGACY_SKU_VARIANT_MAP


@pytest.mark.parametrize("title,expected", [
    ("Black / S", ("Black", "S")),
    ("Heather Grey/XL", ("Heather Grey", "XL")),
    ("Black", None),
    ("Black / S / Cotton", None),
    ("", None),
    (None, None),
])
def test_parse_variant_title(title, expected):
    assert parse_variant_title(title) == expected


def test_normalization():
    assert normalize_color(" Heather  Grey ") == "heathergrey"
    assert normalize_size(" xl ") == "XL"


def test_find_variant_id():
    variants = [{"id": 1, "color": "Black", "size": "S"}, {"id": 2, "color": "Dark Heather", "size": "M"}]
    assert find_variant_id(variants, "dark heather", "m") == 2
    assert find_variant_id(variants, "Black", "M") is None
