"""Marketplace listing watcher: polls saved searches and notifies on new items."""

__version__ = "0.1.0"
