"""
Unit tests for the computation engine (amptrack_kernel.domain.totals).

Verifies:
- Line totals rounded half-up to cents
- total == subtotal + tax, exactly
- Order independence of the subtotal
- Validation of quantity, price, description and tax rate
- Quantities and amounts that would not fit their columns are rejected
"""

import itertools
from decimal import Decimal

import pytest

from amptrack_kernel.domain.totals import (
    LineItemSpec,
    compute_totals,
    normalize_tax_rate,
)
from amptrack_kernel.exceptions import LineItemValidationError, ValidationError


def _item(description, quantity, unit_price):
    return {"description": description, "quantity": quantity, "unit_price": unit_price}


class TestLineItemSpec:

    def test_total_price_is_quantity_times_price(self):
        spec = LineItemSpec.build("Outlet", "3", "12.50")
        assert spec.total_price == Decimal("37.50")

    def test_half_cent_rounds_up(self):
        spec = LineItemSpec.build("Wire", "0.5", "0.05")
        assert spec.total_price == Decimal("0.03")

    def test_fractional_quantity_kept_to_three_places(self):
        spec = LineItemSpec.build("Conduit (ft)", "12.3456", "1.00")
        assert spec.quantity == Decimal("12.346")
        assert spec.total_price == Decimal("12.35")

    def test_float_input_does_not_leak_binary_error(self):
        spec = LineItemSpec.build("Labor", 0.1, 3)
        assert spec.quantity == Decimal("0.100")
        assert spec.total_price == Decimal("0.30")

    def test_description_is_stripped(self):
        assert LineItemSpec.build("  Breaker  ", 1, 10).description == "Breaker"

    @pytest.mark.parametrize("quantity", ["0", "-1", 0])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(LineItemValidationError) as exc_info:
            LineItemSpec.build("Breaker", quantity, "10", index=2)
        assert exc_info.value.index == 2
        assert exc_info.value.field == "quantity"

    def test_negative_price_rejected(self):
        with pytest.raises(LineItemValidationError) as exc_info:
            LineItemSpec.build("Credit", "1", "-5")
        assert exc_info.value.field == "unit_price"

    def test_zero_price_allowed(self):
        assert LineItemSpec.build("Free site visit", "1", "0").total_price == Decimal("0.00")

    @pytest.mark.parametrize("description", ["", "   ", None])
    def test_missing_description_rejected(self, description):
        with pytest.raises(LineItemValidationError) as exc_info:
            LineItemSpec.build(description, "1", "1")
        assert exc_info.value.field == "description"

    def test_overlong_description_rejected(self):
        with pytest.raises(LineItemValidationError):
            LineItemSpec.build("x" * 1001, "1", "1")

    def test_non_numeric_quantity_rejected(self):
        with pytest.raises(LineItemValidationError) as exc_info:
            LineItemSpec.build("Breaker", "two", "1")
        assert exc_info.value.field == "quantity"

    def test_from_mapping_rejects_non_mapping(self):
        with pytest.raises(LineItemValidationError):
            LineItemSpec.from_mapping(["Breaker", 1, 1], index=0)


class TestComputeTotals:

    def test_standard_estimate_totals(self):
        totals = compute_totals(
            [_item("Install panel", "2", "100.00"), _item("Wire run", "1", "50.00")],
            "10",
        )
        assert totals.subtotal == Decimal("250.00")
        assert totals.tax_amount == Decimal("25.00")
        assert totals.total_amount == Decimal("275.00")

    def test_tax_rounds_half_up(self):
        totals = compute_totals([_item("Fixture", "1", "10.05")], "5")
        # 10.05 * 0.05 = 0.5025
        assert totals.tax_amount == Decimal("0.50")
        totals = compute_totals([_item("Fixture", "1", "10.10")], "5")
        # 10.10 * 0.05 = 0.505
        assert totals.tax_amount == Decimal("0.51")

    def test_total_equals_subtotal_plus_tax(self):
        items = [
            _item("A", "3", "19.99"),
            _item("B", "0.75", "80.33"),
            _item("C", "12", "0.07"),
        ]
        totals = compute_totals(items, "8.25")
        assert totals.total_amount == totals.subtotal + totals.tax_amount
        assert totals.total_amount.as_tuple().exponent == -2

    def test_subtotal_is_order_independent(self):
        items = [
            _item("A", "3", "19.99"),
            _item("B", "0.333", "80.33"),
            _item("C", "12", "0.07"),
            _item("D", "1.5", "1.01"),
        ]
        results = {
            (t.subtotal, t.tax_amount, t.total_amount)
            for t in (compute_totals(list(p), "7.5") for p in itertools.permutations(items))
        }
        assert len(results) == 1

    def test_deterministic(self):
        items = [_item("A", "1", "9.99")]
        assert compute_totals(items, "6") == compute_totals(items, "6")

    def test_item_order_preserved(self):
        totals = compute_totals([_item("First", 1, 1), _item("Second", 1, 2)], 0)
        assert [spec.description for spec in totals.items] == ["First", "Second"]

    def test_empty_items_rejected_when_required(self):
        with pytest.raises(ValidationError) as exc_info:
            compute_totals([], "0")
        assert exc_info.value.field == "items"

    def test_empty_items_allowed_when_not_required(self):
        totals = compute_totals([], "10", require_items=False)
        assert totals.subtotal == Decimal("0.00")
        assert totals.total_amount == Decimal("0.00")

    def test_invalid_item_reports_its_index(self):
        with pytest.raises(LineItemValidationError) as exc_info:
            compute_totals([_item("ok", 1, 1), _item("bad", 0, 1)], 0)
        assert exc_info.value.index == 1

    def test_accepts_prebuilt_specs(self):
        spec = LineItemSpec.build("Panel", 1, "99.99")
        assert compute_totals([spec], 0).subtotal == Decimal("99.99")


class TestPrecisionAndMagnitude:
    """Values must survive storage in Numeric(12, 3) / Numeric(12, 2)."""

    @pytest.mark.parametrize("quantity", ["0.0004", "0.0001", "1e-9"])
    def test_quantity_rounding_to_zero_rejected(self, quantity):
        with pytest.raises(LineItemValidationError) as exc_info:
            compute_totals([_item("Wire (ft)", quantity, "10")], 0)
        assert exc_info.value.field == "quantity"
        assert exc_info.value.index == 0

    def test_smallest_stored_quantity_accepted(self):
        spec = LineItemSpec.build("Wire (ft)", "0.0006", "10")
        assert spec.quantity == Decimal("0.001")
        assert spec.quantity > 0
        assert spec.total_price == Decimal("0.01")

    @pytest.mark.parametrize("quantity", ["1e30", "1000000000"])
    def test_oversized_quantity_rejected(self, quantity):
        with pytest.raises(LineItemValidationError) as exc_info:
            compute_totals([_item("Conduit", quantity, "1")], 0)
        assert exc_info.value.field == "quantity"

    @pytest.mark.parametrize("unit_price", ["1e27", "1e11", "10000000000.00"])
    def test_oversized_unit_price_rejected(self, unit_price):
        with pytest.raises(LineItemValidationError) as exc_info:
            compute_totals([_item("Switchgear", "1", unit_price)], 0)
        assert exc_info.value.field == "unit_price"

    def test_largest_stored_amount_accepted(self):
        totals = compute_totals([_item("Substation", "1", "9999999999.99")], 0)
        assert totals.total_amount == Decimal("9999999999.99")

    def test_oversized_line_total_rejected(self):
        with pytest.raises(LineItemValidationError) as exc_info:
            compute_totals([_item("Ok", 1, 1), _item("Transformers", "1000", "9999999999")], 0)
        assert exc_info.value.index == 1

    def test_oversized_subtotal_rejected(self):
        items = [_item("Phase A", "1", "6000000000"), _item("Phase B", "1", "6000000000")]
        with pytest.raises(ValidationError) as exc_info:
            compute_totals(items, 0)
        assert exc_info.value.field == "items"

    def test_tax_pushing_total_over_limit_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            compute_totals([_item("Campus", "1", "9000000000")], "20")
        assert exc_info.value.field == "items"


class TestNormalizeTaxRate:

    @pytest.mark.parametrize("rate", ["0", "100", "8.25", 7])
    def test_valid_rates(self, rate):
        assert normalize_tax_rate(rate) == Decimal(str(rate)).quantize(Decimal("0.01"))

    @pytest.mark.parametrize("rate", ["-0.01", "100.01", "abc", None])
    def test_invalid_rates(self, rate):
        with pytest.raises(ValidationError) as exc_info:
            normalize_tax_rate(rate)
        assert exc_info.value.field == "tax_rate"
