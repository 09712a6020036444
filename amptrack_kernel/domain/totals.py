"""
Computation engine -- line items to subtotal, tax and total.

Responsibility:
    The single derivation of every monetary field on a document.  Line
    totals, subtotal, tax and grand total are computed here and nowhere else.

Architecture position:
    Kernel > Domain -- pure function, zero I/O.

Invariants enforced:
    - line total == round(quantity * unit_price, 2), ROUND_HALF_UP.
    - subtotal == sum of line totals (order independent; Decimal addition of
      already-quantized values is exact).
    - tax == round(subtotal * rate / 100, 2).
    - total == subtotal + tax, exactly, to two places.

Failure modes:
    - LineItemValidationError for an empty description, quantity <= 0 (also
      after rounding to three places), a negative unit price, or a quantity,
      price or line total too large for its column.  ``index`` is the
      item's position in the input.
    - ValidationError for a tax rate outside 0..100, an empty item list
      when items are required, or a document total above MAX_MONEY.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from amptrack_kernel.db.types import MAX_MONEY, MAX_QUANTITY, ZERO, round_money, to_decimal
from amptrack_kernel.exceptions import LineItemValidationError, ValidationError

MAX_TAX_RATE = Decimal("100")
QUANTITY_PLACES = Decimal("0.001")


@dataclass(frozen=True)
class LineItemSpec:
    """One validated line item, with its derived total."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal

    @classmethod
    def build(
        cls,
        description: str,
        quantity: Any,
        unit_price: Any,
        *,
        index: int = 0,
    ) -> LineItemSpec:
        """
        Validate raw values and derive ``total_price``.

        Raises:
            LineItemValidationError: On any rule violation.
        """
        text = (description or "").strip() if isinstance(description, str) else ""
        if not text:
            raise LineItemValidationError(index, "description is required", field="description")
        if len(text) > 1000:
            raise LineItemValidationError(
                index, "description must be at most 1000 characters", field="description"
            )

        try:
            qty = to_decimal(quantity, "quantity")
        except ValueError as exc:
            raise LineItemValidationError(index, str(exc), field="quantity") from exc
        try:
            price = to_decimal(unit_price, "unit_price")
        except ValueError as exc:
            raise LineItemValidationError(index, str(exc), field="unit_price") from exc

        if qty <= 0:
            raise LineItemValidationError(index, "quantity must be greater than 0", field="quantity")
        if qty > MAX_QUANTITY:
            raise LineItemValidationError(
                index, f"quantity must not exceed {MAX_QUANTITY}", field="quantity"
            )
        if price < 0:
            raise LineItemValidationError(index, "unit_price must not be negative", field="unit_price")
        if price > MAX_MONEY:
            raise LineItemValidationError(
                index, f"unit_price must not exceed {MAX_MONEY}", field="unit_price"
            )

        # Quantities below the stored precision round to zero
        qty = qty.quantize(QUANTITY_PLACES)
        if qty <= 0:
            raise LineItemValidationError(
                index, f"quantity must be at least {QUANTITY_PLACES}", field="quantity"
            )
        price = round_money(price)
        total = round_money(qty * price)
        if total > MAX_MONEY:
            raise LineItemValidationError(
                index, f"line total must not exceed {MAX_MONEY}", field="quantity"
            )
        return cls(
            description=text,
            quantity=qty,
            unit_price=price,
            total_price=total,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, index: int = 0) -> LineItemSpec:
        """Build from a request dict with description/quantity/unit_price keys."""
        if isinstance(data, LineItemSpec):
            return data
        if not isinstance(data, Mapping):
            raise LineItemValidationError(index, "item must be an object")
        return cls.build(
            data.get("description", ""),
            data.get("quantity"),
            data.get("unit_price"),
            index=index,
        )


@dataclass(frozen=True)
class DocumentTotals:
    """Derived money fields of a document."""

    items: tuple[LineItemSpec, ...]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def normalize_tax_rate(tax_rate_percent: Any) -> Decimal:
    """
    Validate a tax rate in percent and quantize to two places.

    Raises:
        ValidationError: If the rate is not a number in 0..100.
    """
    try:
        rate = to_decimal(tax_rate_percent, "tax_rate")
    except ValueError as exc:
        raise ValidationError(str(exc), field="tax_rate") from exc
    if rate < 0 or rate > MAX_TAX_RATE:
        raise ValidationError("tax_rate must be between 0 and 100", field="tax_rate")
    return round_money(rate)


def compute_totals(
    items: Iterable[LineItemSpec | Mapping[str, Any]],
    tax_rate_percent: Any,
    *,
    require_items: bool = True,
) -> DocumentTotals:
    """
    Derive line totals, subtotal, tax and total from raw or validated items.

    Deterministic and free of side effects; calling it twice with the same
    input yields equal results.
    """
    rate = normalize_tax_rate(tax_rate_percent)
    specs = tuple(
        LineItemSpec.from_mapping(item, index=index)
        for index, item in enumerate(items)
    )
    if require_items and not specs:
        raise ValidationError("At least one line item is required", field="items")

    subtotal = sum((spec.total_price for spec in specs), ZERO)
    tax_amount = round_money(subtotal * rate / Decimal(100))
    total_amount = subtotal + tax_amount
    if total_amount > MAX_MONEY:
        raise ValidationError(f"document total must not exceed {MAX_MONEY}", field="items")
    return DocumentTotals(
        items=specs,
        subtotal=subtotal,
        tax_rate=rate,
        tax_amount=tax_amount,
        total_amount=total_amount,
    )
