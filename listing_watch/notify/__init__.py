"""Notification delivery and message formatting."""
