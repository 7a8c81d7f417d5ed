"""
Due-time arithmetic for drip steps.
"""
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from dripline.errors import StepValidationError
from dripline.models.sequence import DelayType, DelayUnit


_FIXED_UNITS = {
    DelayUnit.MINUTES: timedelta(minutes=1),
    DelayUnit.HOURS: timedelta(hours=1),
    DelayUnit.DAYS: timedelta(days=1),
    DelayUnit.WEEKS: timedelta(weeks=1),
}


def validate_delay(delay_type, delay_value, delay_unit) -> tuple[DelayType, int, DelayUnit]:
    """
    Check the delay invariants and coerce raw values to their enums.

    immediate requires a zero magnitude, after requires a positive one.

    Raises:
        StepValidationError: on an unknown type/unit or a bad magnitude
    """
    try:
        delay_type = DelayType(delay_type)
    except ValueError:
        raise StepValidationError(f"Unknown delay type: {delay_type}")
    try:
        delay_unit = DelayUnit(delay_unit)
    except ValueError:
        raise StepValidationError(f"Unknown delay unit: {delay_unit}")

    if isinstance(delay_value, bool) or not isinstance(delay_value, int):
        raise StepValidationError("Delay value must be an integer")
    if delay_type == DelayType.IMMEDIATE and delay_value != 0:
        raise StepValidationError("Immediate steps must have a delay value of 0")
    if delay_type == DelayType.AFTER and delay_value <= 0:
        raise StepValidationError("Delayed steps must have a delay value greater than 0")

    return delay_type, delay_value, delay_unit


def compute_due_at(entered_at: datetime, delay_type, delay_value, delay_unit) -> datetime:
    """
    Compute the absolute send time of a step for a given stage entry.

    Args:
        entered_at: When the deal entered the stage
        delay_type: immediate or after
        delay_value: Delay magnitude
        delay_unit: minutes, hours, days, weeks or months

    Returns:
        entered_at itself for immediate steps, otherwise entered_at plus the delay
    """
    delay_type, delay_value, delay_unit = validate_delay(delay_type, delay_value, delay_unit)

    if delay_type == DelayType.IMMEDIATE:
        return entered_at
    if delay_unit == DelayUnit.MONTHS:
        # relativedelta clamps to the last day of the target month
        return entered_at + relativedelta(months=delay_value)
    return entered_at + _FIXED_UNITS[delay_unit] * delay_value
