"""Charge amount normalization to integer minor currency units."""

import logging
import math

from courier.config.schema import AmountMode

logger = logging.getLogger(__name__)


class PaymentRequestError(ValueError):
    """The payment request itself is invalid; the caller must correct it."""


class AmountError(PaymentRequestError):
    pass


def normalize_amount(
    value: int | float | str | None,
    mode: AmountMode = AmountMode.MINOR,
    heuristic_threshold: int = 1000,
) -> int:
    """Return a positive integer amount in minor units.

    In MINOR mode anything that is not a whole number is rejected, since a
    fractional value cannot be told apart from a major-unit price.

    In HEURISTIC mode a non-integer below the threshold is read as a
    major-unit decimal (65.22 -> 6522) and anything else is rounded.
    An integral value below the threshold is still taken as minor units,
    which is the ambiguity that makes this mode unsafe.
    """
    if value is None or isinstance(value, bool):
        raise AmountError("Amount is required")
    try:
        amount = float(value)
    except (TypeError, ValueError) as e:
        raise AmountError(f"Amount must be a number, got {value!r}") from e
    if not math.isfinite(amount) or amount <= 0:
        raise AmountError("Amount must be a positive number")

    if amount.is_integer():
        return int(amount)

    if mode == AmountMode.MINOR:
        raise AmountError(
            f"Amount {value!r} is not an integer number of minor units"
        )

    if amount < heuristic_threshold:
        converted = round(amount * 100)
        logger.info("Converting decimal amount %s to minor units: %d", value, converted)
        return converted

    converted = round(amount)
    logger.info("Rounding amount %s to integer minor units: %d", value, converted)
    return converted
