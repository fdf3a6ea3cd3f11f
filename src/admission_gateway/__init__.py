"""Admission Gateway: request admission and throttling for the messaging API."""

__version__ = "0.1.0"
