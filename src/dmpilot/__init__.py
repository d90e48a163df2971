"""DM Pilot - Instagram DM conversation automation engine."""

__version__ = "0.3.0"
