"""Mailbench backend: connected Gmail accounts, sharing and stored API keys."""

__version__ = "1.4.0"
