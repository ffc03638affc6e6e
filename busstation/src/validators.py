"""
Guard checks for the dispatch workflow.

This module centralizes:
- Status membership (closed enumeration)
- Transition enforcement against the dispatch status table
- Action preconditions narrower than the graph (permit retry)
- Edit, delete and cancel preconditions
- Phase field consistency of a record

All functions raise appropriate exceptions from `busstation.src.exceptions`
when validation fails. They are pure and may be called concurrently.
"""

from typing import Any, Dict

from busstation.src import exceptions, transitions
from busstation.src.db import DispatchRecord
from busstation.src.enums import DispatchAction, DispatchStatus
from busstation.src.functions import isValidTransition


# ---------------------------------------------------------------------------
# Status checks
# ---------------------------------------------------------------------------
def dispatchStatus(value: Any) -> DispatchStatus:
    """
    Coerce a stored or requested value into a `DispatchStatus`.

    Raises:
        exceptions.UnknownStatus: If the value is not a member of the table.
    """
    if isinstance(value, DispatchStatus):
        return value
    try:
        return DispatchStatus(value)
    except ValueError:
        raise exceptions.UnknownStatus(value)


def dispatchTransition(current: Any, target: Any) -> bool:
    """
    Validate a single hop of the dispatch status graph.

    Args:
        current (Any): Status the record is in.
        target (Any): Status the record should move to.

    Returns:
        bool: True if `target` is one hop away from `current`.

    Raises:
        exceptions.UnknownStatus: If either value is outside the table.
        exceptions.IllegalTransition: If the hop is not in the graph.
    """
    current = dispatchStatus(current)
    target = dispatchStatus(target)
    if not isValidTransition(transitions.DISPATCH_TRANSITIONS, current, target):
        raise exceptions.IllegalTransition(
            current, target, transitions.nextStatuses(current)
        )
    return True


def dispatchAction(action: DispatchAction, current: DispatchStatus) -> bool:
    """Check action specific preconditions that the graph alone allows."""
    sources = transitions.ACTION_SOURCES.get(action)
    if sources is not None and current not in sources:
        target = transitions.ACTION_ROUTES[action][-1]
        raise exceptions.IllegalTransition(
            current, target, transitions.nextStatuses(current)
        )
    return True


def cancellation(current: DispatchStatus) -> bool:
    """Cancellation is allowed from every non terminal status, exactly once."""
    if transitions.isTerminal(current):
        raise exceptions.IllegalTransition(current, DispatchStatus.CANCELLED, ())
    return True


def editable(current: DispatchStatus) -> bool:
    if current not in transitions.EDITABLE_STATUSES:
        raise exceptions.ImmutableRecord(current)
    return True


def deletable(current: DispatchStatus) -> bool:
    if current in transitions.UNDELETABLE_STATUSES:
        raise exceptions.ImmutableRecord(current)
    return True


# ---------------------------------------------------------------------------
# Record consistency
# ---------------------------------------------------------------------------
def phaseConsistency(status: DispatchStatus, fields: Dict[str, Any]) -> bool:
    """
    Check that the phase columns agree with `status`.

    Columns of every reached phase must be set and columns of every later
    phase must be unset. A cancelled record keeps whatever it had.

    Raises:
        exceptions.InvalidValue: On the first column that disagrees.
    """
    if status == DispatchStatus.CANCELLED:
        required = transitions.PHASE_REQUIRED_FIELDS[status]
        unset = ()
    else:
        required = [
            field
            for phase in transitions.reachedPhases(status)
            for field in transitions.PHASE_REQUIRED_FIELDS[phase]
        ]
        unset = transitions.laterPhaseFields(status)

    for field in required:
        if fields.get(field) is None:
            raise exceptions.InvalidValue(
                getattr(DispatchRecord, field), f"required in {status} status"
            )
    for field in unset:
        if fields.get(field) is not None:
            raise exceptions.InvalidValue(
                getattr(DispatchRecord, field), f"must be unset in {status} status"
            )
    return True
