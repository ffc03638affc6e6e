from enum import IntEnum, StrEnum


class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class DispatchStatus(StrEnum):
    ENTERED = "entered"
    PASSENGERS_DROPPED = "passengers_dropped"
    PERMIT_ISSUED = "permit_issued"
    PERMIT_REJECTED = "permit_rejected"
    PAID = "paid"
    DEPARTURE_ORDERED = "departure_ordered"
    DEPARTED = "departed"
    EXITED = "exited"
    CANCELLED = "cancelled"


class DispatchAction(StrEnum):
    ENTER = "enter"
    DROP_PASSENGERS = "drop_passengers"
    ISSUE_PERMIT = "issue_permit"
    REJECT_PERMIT = "reject_permit"
    RETRY_AFTER_REJECTION = "retry_after_rejection"
    PAY = "pay"
    ORDER_DEPARTURE = "order_departure"
    DEPART = "depart"
    EXIT = "exit"
    CANCEL = "cancel"


class PermitStatus(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(StrEnum):
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"


class DispatchOrderBy(IntEnum):
    id = 1
    entry_time = 2
    updated_on = 3
    created_on = 4
