"""lendingdesk: patron lending over a shared, finite inventory."""

__version__ = "0.1.0"
