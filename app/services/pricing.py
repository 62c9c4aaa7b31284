from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Union
import logging

from app.core.exceptions import ValidationError


logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

_HUNDRED = Decimal(100)
_ZERO = Decimal(0)


def _to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from carrying binary noise
    return Decimal(str(value))


@dataclass(frozen=True)
class DiscountInput:
    """Discount requested for an appointment. Percentage wins over a flat amount."""

    percentage: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    reason: Optional[str] = None

    @classmethod
    def from_spec(cls, spec: Any) -> Optional["DiscountInput"]:
        if spec is None:
            return None
        return cls(
            percentage=getattr(spec, "percentage", None),
            flat_amount=getattr(spec, "flat_amount", None),
            reason=getattr(spec, "reason", None),
        )


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount_amount: Decimal
    tax: Decimal
    total: Decimal
    total_duration: int


class PricingCalculator:
    """Aggregate service line and add-on prices into appointment totals.

    Service lines are duck-typed: anything with ``price``, ``duration_minutes``
    and an ``addons`` iterable works, so ORM rows and plain dataclasses price the
    same way. Add-ons need ``price``, ``duration_minutes`` and optionally
    ``quantity`` (default 1).

    Arithmetic is exact ``Decimal`` with no rounding; rounding belongs to
    whatever displays or stores the result.
    """

    def price(
        self,
        service_lines: Iterable[Any],
        discount: Optional[DiscountInput] = None,
        tax_rate: Optional[Number] = None,
    ) -> PriceBreakdown:
        subtotal = _ZERO
        total_duration = 0

        for index, line in enumerate(service_lines):
            line_price = self._non_negative(line.price, f"service_lines[{index}].price")
            line_duration = self._non_negative_int(
                line.duration_minutes, f"service_lines[{index}].duration_minutes"
            )
            subtotal += line_price
            total_duration += line_duration

            for addon_index, addon in enumerate(getattr(line, "addons", None) or []):
                field = f"service_lines[{index}].addons[{addon_index}]"
                quantity = self._non_negative_int(
                    getattr(addon, "quantity", 1), f"{field}.quantity"
                )
                addon_price = self._non_negative(addon.price, f"{field}.price")
                addon_duration = self._non_negative_int(
                    addon.duration_minutes, f"{field}.duration_minutes"
                )
                subtotal += addon_price * quantity
                total_duration += addon_duration * quantity

        discount_amount = self._discount_amount(subtotal, discount)
        rate = self._non_negative(tax_rate, "tax_rate")
        if rate > 1:
            raise ValidationError(
                "tax_rate must be a fraction between 0 and 1", {"field": "tax_rate"}
            )
        tax = (subtotal - discount_amount) * rate
        total = subtotal - discount_amount + tax

        logger.debug(
            f"Priced {total_duration}min: subtotal={subtotal} "
            f"discount={discount_amount} tax={tax} total={total}"
        )
        return PriceBreakdown(
            subtotal=subtotal,
            discount_amount=discount_amount,
            tax=tax,
            total=total,
            total_duration=total_duration,
        )

    def _discount_amount(
        self, subtotal: Decimal, discount: Optional[DiscountInput]
    ) -> Decimal:
        if discount is None:
            return _ZERO

        if discount.percentage is not None:
            percentage = self._non_negative(discount.percentage, "discount.percentage")
            amount = subtotal * percentage / _HUNDRED
        elif discount.flat_amount is not None:
            amount = self._non_negative(discount.flat_amount, "discount.flat_amount")
        else:
            return _ZERO

        # Clamp to [0, subtotal]
        return max(_ZERO, min(amount, subtotal))

    @staticmethod
    def _non_negative(value: Optional[Number], field: str) -> Decimal:
        try:
            if isinstance(value, bool):
                raise InvalidOperation(value)
            amount = _to_decimal(value)
            if not amount.is_finite():
                raise InvalidOperation(value)
        except InvalidOperation as e:
            raise ValidationError(f"{field} must be a number", {"field": field}) from e
        if amount < 0:
            raise ValidationError(f"{field} must not be negative", {"field": field})
        return amount

    @staticmethod
    def _non_negative_int(value: Optional[Number], field: str) -> int:
        amount = PricingCalculator._non_negative(value, field)
        if amount != amount.to_integral_value():
            raise ValidationError(f"{field} must be a whole number", {"field": field})
        return int(amount)
