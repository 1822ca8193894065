"""Telegram support desk and product catalog bot."""

__version__ = "0.1.0"
