from .tables import (
    Base,
    BookingEvents,
    Bookings,
    Providers,
    SlotBlackoutDates,
    SlotConfigs,
    SlotLocks,
    metadata,
)

__all__ = [
    "Base",
    "BookingEvents",
    "Bookings",
    "Providers",
    "SlotBlackoutDates",
    "SlotConfigs",
    "SlotLocks",
    "metadata",
]
