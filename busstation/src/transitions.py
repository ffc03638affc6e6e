"""
Dispatch status table.

Holds the closed set of dispatch statuses, the directed graph of legal
next statuses, the route each workflow action takes through that graph and
the columns owned by each phase.

Workflow:
    entered -> passengers_dropped -> permit_issued -> paid
            -> departure_ordered -> departed -> exited
                                 |
                                 v
                          permit_rejected -> (retry) passengers_dropped

`cancelled` is a terminal side-status reached only through cancellation;
nothing in the graph leads to it.

Pure lookups only, no I/O.
"""

from typing import List, Tuple

from busstation.src.enums import DispatchAction, DispatchStatus


# ---------------------------------------------------------------------------
# Adjacency map
# ---------------------------------------------------------------------------
DISPATCH_TRANSITIONS: dict[DispatchStatus, Tuple[DispatchStatus, ...]] = {
    DispatchStatus.ENTERED: (DispatchStatus.PASSENGERS_DROPPED,),
    DispatchStatus.PASSENGERS_DROPPED: (
        DispatchStatus.PERMIT_ISSUED,
        DispatchStatus.PERMIT_REJECTED,
    ),
    DispatchStatus.PERMIT_ISSUED: (DispatchStatus.PAID,),
    DispatchStatus.PERMIT_REJECTED: (DispatchStatus.PASSENGERS_DROPPED,),
    DispatchStatus.PAID: (DispatchStatus.DEPARTURE_ORDERED,),
    DispatchStatus.DEPARTURE_ORDERED: (DispatchStatus.DEPARTED,),
    DispatchStatus.DEPARTED: (DispatchStatus.EXITED,),
    DispatchStatus.EXITED: (),
    DispatchStatus.CANCELLED: (),
}

STATUS_DISPLAY_NAMES: dict[DispatchStatus, str] = {
    DispatchStatus.ENTERED: "Entered station",
    DispatchStatus.PASSENGERS_DROPPED: "Passengers dropped",
    DispatchStatus.PERMIT_ISSUED: "Boarding permit issued",
    DispatchStatus.PERMIT_REJECTED: "Boarding permit rejected",
    DispatchStatus.PAID: "Paid",
    DispatchStatus.DEPARTURE_ORDERED: "Departure ordered",
    DispatchStatus.DEPARTED: "Departed",
    DispatchStatus.EXITED: "Exited station",
    DispatchStatus.CANCELLED: "Cancelled",
}


# ---------------------------------------------------------------------------
# Workflow actions
# ---------------------------------------------------------------------------
# Hops an action walks through. A leading hop that the record already sits
# on is skipped, so EXIT works from both DEPARTURE_ORDERED and DEPARTED.
ACTION_ROUTES: dict[DispatchAction, Tuple[DispatchStatus, ...]] = {
    DispatchAction.ENTER: (DispatchStatus.ENTERED,),
    DispatchAction.DROP_PASSENGERS: (DispatchStatus.PASSENGERS_DROPPED,),
    DispatchAction.ISSUE_PERMIT: (DispatchStatus.PERMIT_ISSUED,),
    DispatchAction.REJECT_PERMIT: (DispatchStatus.PERMIT_REJECTED,),
    DispatchAction.RETRY_AFTER_REJECTION: (DispatchStatus.PASSENGERS_DROPPED,),
    DispatchAction.PAY: (DispatchStatus.PAID,),
    DispatchAction.ORDER_DEPARTURE: (DispatchStatus.DEPARTURE_ORDERED,),
    DispatchAction.DEPART: (DispatchStatus.DEPARTED,),
    DispatchAction.EXIT: (DispatchStatus.DEPARTED, DispatchStatus.EXITED),
    DispatchAction.CANCEL: (DispatchStatus.CANCELLED,),
}

# Actions narrower than the graph itself
ACTION_SOURCES: dict[DispatchAction, Tuple[DispatchStatus, ...]] = {
    DispatchAction.RETRY_AFTER_REJECTION: (DispatchStatus.PERMIT_REJECTED,),
}

EDITABLE_STATUSES = (DispatchStatus.ENTERED, DispatchStatus.PASSENGERS_DROPPED)
UNDELETABLE_STATUSES = (DispatchStatus.DEPARTED, DispatchStatus.EXITED)


# ---------------------------------------------------------------------------
# Phase fields
# ---------------------------------------------------------------------------
_PERMIT_FIELDS = (
    "boarding_permit_time",
    "planned_departure_time",
    "transport_order_code",
    "seat_count",
    "permit_status",
    "boarding_permit_by",
    "permit_shift_id",
)

PHASE_FIELDS: dict[DispatchStatus, Tuple[str, ...]] = {
    DispatchStatus.ENTERED: ("entry_time", "entry_by", "entry_shift_id"),
    DispatchStatus.PASSENGERS_DROPPED: (
        "passenger_drop_time",
        "passengers_arrived",
        "passenger_drop_by",
        "passenger_drop_shift_id",
    ),
    DispatchStatus.PERMIT_ISSUED: _PERMIT_FIELDS,
    DispatchStatus.PERMIT_REJECTED: _PERMIT_FIELDS,
    DispatchStatus.PAID: (
        "payment_time",
        "payment_amount",
        "payment_method",
        "invoice_number",
        "payment_by",
        "payment_shift_id",
    ),
    DispatchStatus.DEPARTURE_ORDERED: (
        "departure_order_time",
        "passengers_departing",
        "departure_order_by",
        "departure_order_shift_id",
    ),
    DispatchStatus.DEPARTED: ("departure_time", "departure_by", "departure_shift_id"),
    DispatchStatus.EXITED: ("exit_time", "exit_by", "exit_shift_id"),
    DispatchStatus.CANCELLED: ("cancelled_on", "cancelled_by", "cancel_reason"),
}

# Fields that must be populated once the phase has been reached
PHASE_REQUIRED_FIELDS: dict[DispatchStatus, Tuple[str, ...]] = {
    DispatchStatus.ENTERED: ("entry_time", "entry_by"),
    DispatchStatus.PASSENGERS_DROPPED: ("passenger_drop_time", "passenger_drop_by"),
    DispatchStatus.PERMIT_ISSUED: (
        "boarding_permit_time",
        "permit_status",
        "boarding_permit_by",
    ),
    DispatchStatus.PERMIT_REJECTED: (
        "boarding_permit_time",
        "permit_status",
        "boarding_permit_by",
    ),
    DispatchStatus.PAID: ("payment_time", "payment_amount", "payment_by"),
    DispatchStatus.DEPARTURE_ORDERED: ("departure_order_time", "departure_order_by"),
    DispatchStatus.DEPARTED: ("departure_time", "departure_by"),
    DispatchStatus.EXITED: ("exit_time", "exit_by"),
    DispatchStatus.CANCELLED: ("cancelled_on", "cancelled_by"),
}

# Position of each status along the forward workflow
PHASE_RANK: dict[DispatchStatus, int] = {
    DispatchStatus.ENTERED: 0,
    DispatchStatus.PASSENGERS_DROPPED: 1,
    DispatchStatus.PERMIT_ISSUED: 2,
    DispatchStatus.PERMIT_REJECTED: 2,
    DispatchStatus.PAID: 3,
    DispatchStatus.DEPARTURE_ORDERED: 4,
    DispatchStatus.DEPARTED: 5,
    DispatchStatus.EXITED: 6,
}


for _table in (DISPATCH_TRANSITIONS, STATUS_DISPLAY_NAMES, PHASE_FIELDS):
    _missing = set(DispatchStatus) - set(_table)
    if _missing:
        raise RuntimeError(f"Dispatch status table is missing {sorted(_missing)}")
if set(DispatchAction) - set(ACTION_ROUTES):
    raise RuntimeError("Every dispatch action needs a route")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def nextStatuses(status: DispatchStatus) -> Tuple[DispatchStatus, ...]:
    """Statuses reachable from `status` in exactly one hop."""
    return DISPATCH_TRANSITIONS[status]


def isTerminal(status: DispatchStatus) -> bool:
    return not DISPATCH_TRANSITIONS[status]


def displayName(status: DispatchStatus) -> str:
    return STATUS_DISPLAY_NAMES[status]


def actionRoute(
    action: DispatchAction, current: DispatchStatus
) -> Tuple[DispatchStatus, ...]:
    """
    Return the hops `action` must take starting from `current`.

    Leading hops already reached are dropped. The returned tuple is never
    empty; whether each hop is legal is decided by the validator.

    Example:
        >>> actionRoute(DispatchAction.EXIT, DispatchStatus.DEPARTED)
        (<DispatchStatus.EXITED: 'exited'>,)
    """
    route = ACTION_ROUTES[action]
    for index, hop in enumerate(route[:-1]):
        if hop == current:
            return route[index + 1 :]
    return route


def laterPhaseFields(status: DispatchStatus) -> Tuple[str, ...]:
    """Columns of every phase that lies strictly after `status`."""
    rank = PHASE_RANK[status]
    fields = []
    for phase, phaseRank in PHASE_RANK.items():
        if phaseRank > rank:
            fields.extend(f for f in PHASE_FIELDS[phase] if f not in fields)
    return tuple(fields)


def reachedPhases(status: DispatchStatus) -> Tuple[DispatchStatus, ...]:
    """Forward-workflow statuses at or before `status` on its own branch."""
    if status == DispatchStatus.CANCELLED:
        return ()
    rank = PHASE_RANK[status]
    reached = []
    for phase, phaseRank in PHASE_RANK.items():
        # Anything past the permit phase went through PERMIT_ISSUED
        if phase == status or (
            phaseRank < rank and phase != DispatchStatus.PERMIT_REJECTED
        ):
            reached.append(phase)
    return tuple(reached)


def statusTable() -> List[dict]:
    """Every status with its label and legal next statuses, for UI listings."""
    return [
        {
            "status": status,
            "name": STATUS_DISPLAY_NAMES[status],
            "next": list(DISPATCH_TRANSITIONS[status]),
            "is_terminal": isTerminal(status),
        }
        for status in DispatchStatus
    ]
