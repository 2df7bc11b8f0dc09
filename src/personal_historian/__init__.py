"""Personal Historian - a conversational life-logging assistant."""

__version__ = "0.1.0"
