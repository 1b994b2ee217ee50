"""Partner commission billing for retreat bookings."""

__version__ = "1.0.0"
