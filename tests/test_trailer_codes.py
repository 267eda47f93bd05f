"""Model-code parsing and inventory pricing."""

import pytest

from app.saleshub.modules.inventory.parsers.pdf import parse_lines
from app.saleshub.modules.inventory.pricing import (
    ASK_FOR_PRICING,
    PRICED,
    calculate_desired_price,
    compute_selling_price,
)
from app.saleshub.modules.inventory.trailer_codes import (
    diamond_height,
    format_height,
    format_trailer_specs,
    parse_axle,
    parse_color,
    parse_height_feet,
    parse_rear,
    parse_size,
    parse_trailer_model,
)


class TestParseTrailerModel:
    def test_full_diamond_code(self):
        specs = parse_trailer_model("7X16TA2 B.080 R VN 7'")
        assert (specs.width, specs.length) == (7, 16)
        assert specs.axle_type == "Tandem"
        assert specs.axle_weight == 3500
        assert specs.color.name == "Black"
        assert specs.color.is_premium is True
        assert specs.skin_material == "Polycore"
        assert specs.skin_thickness == ".080"
        assert specs.features == ["Ramp Door", "V-Nose"]
        assert specs.interior_height == 7

    def test_format_specs(self):
        specs = parse_trailer_model("7X16TA2 B.080 R VN 7'")
        assert format_trailer_specs(specs) == "7×16 • TA • Black • Polycore • Ramp Door • V-Nose • 7' Interior"

    def test_two_tone_color(self):
        color = parse_color("6X12SA ORG/B.030 DD")
        assert color.name == "Orange/Black"
        assert color.is_two_tone is True

    def test_defaults_to_white(self):
        assert parse_color("6X12SA").name == "White"

    def test_single_axle(self):
        assert parse_axle("5X8SA") == ("Single", None)
        assert parse_axle("7X14TA") == ("Tandem", None)


def test_parse_size_variants():
    assert parse_size("8.5X20TA") == (8.5, 20.0)
    assert parse_size("6 x 12 TA") == (6.0, 12.0)
    assert parse_size("utility") is None
    assert parse_size(None) is None


def test_parse_rear_prefers_longer_codes():
    assert parse_rear("7x14 R-RW") == "R-RW"
    assert parse_rear("6x12 dd") == "DD"
    assert parse_rear(None) is None


def test_heights():
    assert parse_height_feet("6'6") == pytest.approx(6.5)
    assert parse_height_feet("7'") == 7.0
    assert parse_height_feet("") is None
    assert format_height(6.5) == "6'6\""
    assert format_height(7.0) == "7'0\""
    assert diamond_height(6) == 5.5
    assert diamond_height(7) == 6.25


class TestPricing:
    def test_desired_price_keeps_minimum_profit(self):
        assert calculate_desired_price(4000) == 5500
        assert calculate_desired_price(10000) == 12500

    def test_import_price_uses_larger_rule(self):
        r = compute_selling_price(5425)
        assert r.pricing_status == PRICED
        assert r.price == pytest.approx(6825)
        assert compute_selling_price(8000).price == pytest.approx(10000)

    def test_import_price_from_text(self):
        assert compute_selling_price("$5,000").price == pytest.approx(6400)

    @pytest.mark.parametrize("raw", [None, 0, "", "Call for price", "TBD"])
    def test_unpriced_costs(self, raw):
        r = compute_selling_price(raw)
        assert r.price is None
        assert r.pricing_status == ASK_FOR_PRICING


def test_pdf_line_parsing():
    text = "\n".join(
        [
            "DIAMOND CARGO STOCK LIST",
            "4X4TC1623R1234567 7X16TA2 B.080 R VN 7' $5,425.00",
            "4X4TC1623R7654321 6X12SA W.030 DD 6' MAKE OFFER",
            "page 1 of 1",
        ]
    )
    result = parse_lines(text, "Diamond Cargo")
    assert len(result.trailers) == 2
    first, second = result.trailers
    assert first.vin == "4X4TC1623R1234567"
    assert first.cost == pytest.approx(5425.0)
    assert first.width == 7.0 and first.length == 16.0
    assert first.color == "Black"
    assert second.cost is None
    assert second.make_offer is True
