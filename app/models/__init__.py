# Models package
from .booking import Booking, BookingStatus, ManualType, MANUAL_SOURCE
from .property import Property, generate_export_token
from .feed_source import FeedSource

__all__ = [
    "Booking", "BookingStatus", "ManualType", "MANUAL_SOURCE",
    "Property", "generate_export_token",
    "FeedSource",
]
