"""trmnl-cli: send HTML/JSON payloads to TRMNL e-ink display webhooks."""

__version__ = "0.1.0"
