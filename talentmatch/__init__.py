"""Student <-> listing matching engine for the talent marketplace."""

__version__ = "1.0.0"
