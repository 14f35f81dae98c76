# leadscout/__init__.py
"""Local business lead scouting with analytics/pixel detection."""

__version__ = "1.0.0"
