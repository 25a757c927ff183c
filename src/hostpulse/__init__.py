"""hostpulse – host resource sampling, live history and durable storage."""

__version__ = "0.1.0"
