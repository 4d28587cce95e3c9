"""details 提取与重写测试。"""
import json

import pytest

from jewelry_store.details import build_details, cached_prices, extract_material_spec, parse_details
from jewelry_store.models import MaterialSpec, PriceBreakdown, Product

DEFAULT_SPEC = MaterialSpec()


def test_root_level_wins_over_other_sources():
    details = {
        "metalType": "Gold",
        "aiInputs": {"metalType": "Silver"},
        "additionalData": {"metalType": "Platinum", "metalWeight": 4},
    }
    spec = extract_material_spec(details, ai_inputs={"metalType": "Copper", "metalWeight": "7.5"})
    assert spec.metal_type == "Gold"
    # 根级没有克重 → 商品级 aiInputs
    assert spec.metal_weight == 7.5


def test_priority_chain_falls_through_in_order():
    details = {
        "aiInputs": {"mainStoneType": "Ruby"},
        "additionalData": {
            "mainStoneType": "Emerald",
            "mainStoneWeight": "0.75",
            "aiInputs": {"otherStoneType": "Pearl", "otherStoneWeight": 3},
        },
    }
    spec = extract_material_spec(json.dumps(details))
    assert spec.primary_stone == "Ruby"
    assert spec.primary_stone_weight == 0.75
    assert spec.other_stone == "Pearl"
    assert spec.other_stone_weight == 3.0
    assert spec.metal_type == "Unknown"
    assert spec.secondary_stone == "None"


def test_empty_and_invalid_values_fall_through():
    details = {
        "metalType": "",
        "metalWeight": "abc",
        "secondaryStone": "none_selected",
        "secondaryStoneType": "  ",
        "additionalData": {"metalType": "Gold", "metalWeight": "12", "secondaryStoneType": "Sapphire"},
    }
    spec = extract_material_spec(details)
    assert spec.metal_type == "Gold"
    assert spec.metal_weight == 12.0
    assert spec.secondary_stone == "Sapphire"


def test_aliases_and_list_values():
    details = {"primaryStone": "Diamond", "primaryStoneWeight": 1, "secondaryStoneTypes": ["Ruby", "Emerald"]}
    spec = extract_material_spec(details)
    assert spec.primary_stone == "Diamond"
    assert spec.primary_stone_weight == 1.0
    assert spec.secondary_stone == "Ruby"


@pytest.mark.parametrize("raw", ["{not json", "[1, 2, 3]", "42", "", None, 12345])
def test_malformed_details_return_defaults(raw):
    assert extract_material_spec(raw) == DEFAULT_SPEC


def test_nan_weight_returns_default():
    assert extract_material_spec({"metalWeight": "NaN"}).metal_weight == 0.0


def test_sentinel_and_zero_on_canonical_keys_are_final():
    details = {
        "mainStoneType": "none_selected",
        "metalWeight": 0,
        "aiInputs": {"mainStoneType": "Ruby", "metalWeight": 6},
    }
    spec = extract_material_spec(details, ai_inputs={"mainStoneType": "Diamond", "metalWeight": "8"})
    assert spec.primary_stone == "none_selected"
    assert spec.metal_weight == 0.0


def test_alias_sentinel_and_zero_still_fall_through():
    details = {
        "primaryStone": "None",
        "primaryStoneWeight": 0,
        "additionalData": {"mainStoneType": "Opal", "mainStoneWeight": 2},
    }
    spec = extract_material_spec(details)
    assert spec.primary_stone == "Opal"
    assert spec.primary_stone_weight == 2.0


CLEARED = MaterialSpec(metal_type="Gold", metal_weight=0.0, primary_stone="None", primary_stone_weight=0.0)


def test_round_trip_of_cleared_slots_ignores_product_ai_inputs():
    ai_inputs = {"mainStoneType": "Diamond", "mainStoneWeight": 0.5, "metalWeight": 8}
    assert extract_material_spec(build_details({}, CLEARED), ai_inputs) == CLEARED


def test_round_trip_of_cleared_slots_ignores_nested_ai_inputs():
    existing = {
        "aiInputs": {"mainStoneType": "Ruby", "mainStoneWeight": 1.2},
        "additionalData": {"aiInputs": {"metalWeight": 4, "secondaryStoneType": "Pearl"}},
    }
    rewritten = build_details(existing, CLEARED)
    assert extract_material_spec(rewritten) == CLEARED
    assert json.loads(rewritten)["aiInputs"] == existing["aiInputs"]


def test_round_trip_through_build_details():
    spec = MaterialSpec(
        metal_type="18K Gold", metal_weight=6.4,
        primary_stone="Diamond", primary_stone_weight=0.5,
        secondary_stone="Ruby", secondary_stone_weight=0.2,
        other_stone="None", other_stone_weight=0.0,
    )
    assert extract_material_spec(build_details({}, spec)) == spec


def test_build_details_merges_and_overrides_stale_aliases():
    existing = json.dumps({
        "detailedDescription": "Long text",
        "primaryStone": "Ruby",
        "aiInputs": {"userDescription": "keep me"},
        "additionalData": {"tagline": "Shine", "primaryStone": "Ruby"},
    })
    spec = MaterialSpec(metal_type="Gold", metal_weight=3, primary_stone="Emerald", primary_stone_weight=1)
    breakdown = PriceBreakdown(total=62500, total_usd=753)

    rewritten = json.loads(build_details(existing, spec, breakdown, tagline="New"))

    assert rewritten["detailedDescription"] == "Long text"
    assert rewritten["aiInputs"] == {"userDescription": "keep me"}
    assert rewritten["tagline"] == "New"
    assert rewritten["additionalData"]["tagline"] == "Shine"
    assert "primaryStone" not in rewritten
    assert rewritten["additionalData"]["mainStoneType"] == "Emerald"
    assert extract_material_spec(rewritten).primary_stone == "Emerald"
    assert cached_prices(rewritten) == (62500, 753)


def test_parse_details_never_raises():
    assert parse_details("{broken") == {}
    assert parse_details({"a": 1}) == {"a": 1}


def test_product_from_api_keeps_malformed_blob():
    product = Product.from_api({"id": "3", "name": "Pendant", "details": "{oops", "aiInputs": {"metalType": "Silver"}})
    assert product.details == "{oops"
    spec = extract_material_spec(product.details, product.ai_inputs)
    assert spec.metal_type == "Silver"
