"""Capture and session controllers for the biometric attendance kiosk."""

__version__ = "0.1.0"
