from waitroom.models.ticket_pool import TicketPool, DEFAULT_TICKET_TYPE
from waitroom.models.waiting_list import WaitingListEntry, EntryStatus, ACTIVE_STATUSES, ACTIVE_STATUS_VALUES
from waitroom.models.cart import CartItem

__all__ = [
    "TicketPool", "DEFAULT_TICKET_TYPE",
    "WaitingListEntry", "EntryStatus", "ACTIVE_STATUSES", "ACTIVE_STATUS_VALUES",
    "CartItem",
]
