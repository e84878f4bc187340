"""AI Skills Studio ambassador and referral service."""

__version__ = "1.0.0"
