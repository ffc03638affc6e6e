from datetime import datetime, time, timezone
from typing import Any, List, Dict, Optional
from zoneinfo import ZoneInfo

from busstation.src import schemas
from busstation.src.constants import TMZ_STATION


def makeExceptionResponses(exceptions: List[Any]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation from APIException classes or instances.

    Args:
        exceptions (List[Any]): Exception classes (using their class level
            defaults) or instantiated exceptions.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        status_code = exception.status_code
        if isinstance(exception, type):
            example_key = exception.__name__
        else:
            example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {"detail": exception.detail},
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Example:
        >>> enumStr(PaymentMethod)
        'CASH: cash, TRANSFER: transfer, CARD: card'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def isValidTransition(
    transitions: dict[Any, Any], old_state: Any, new_state: Any
) -> bool:
    """
    Check if a state transition is valid.

    Args:
        transitions (dict[Any, Any]): Mapping of valid transitions.
            Example:
                {
                    "entered": ("passengers_dropped",),
                    "passengers_dropped": ("permit_issued", "permit_rejected"),
                }
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.

    Returns:
        bool: True if transition is valid, False otherwise.

    Notes:
        - If `old_state` is not in the transitions mapping, this will return False.
    """
    if not transitions:
        return False
    if old_state not in transitions:
        return False
    return new_state in transitions[old_state]


def updateIfChanged(targetObj, sourceObj, fields: List[str]) -> None:
    """
    Update attributes on a target object from a source object
    only if the values differ and the new value is not None.

    Example:
        >>> updateIfChanged(
        ...     record,
        ...     payload,
        ...     [DispatchRecord.vehicle_id.key, DispatchRecord.notes.key],
        ... )
    """
    for field in fields:
        new_value = getattr(sourceObj, field, None)
        if new_value is not None:
            old_value = getattr(targetObj, field)
            if old_value != new_value:
                setattr(targetObj, field, new_value)


def toUTC(value: Optional[datetime], assumed: ZoneInfo = TMZ_STATION) -> Optional[datetime]:
    """
    Normalize a timestamp to UTC.

    Values without an offset are taken to be in the `assumed` timezone,
    which defaults to station local time.

    Example:
        >>> toUTC(datetime(2024, 12, 18, 15, 0))
        datetime.datetime(2024, 12, 18, 8, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=assumed)
    return value.astimezone(timezone.utc)


def isWithinWindow(moment: time, starting_at: time, ending_at: time) -> bool:
    """
    Check whether a time of day falls inside a [starting_at, ending_at) window.

    Windows with `starting_at` later than `ending_at` wrap past midnight.

    Example:
        >>> isWithinWindow(time(23, 0), time(22, 0), time(6, 0))
        True
    """
    if starting_at <= ending_at:
        return starting_at <= moment < ending_at
    return moment >= starting_at or moment < ending_at
