"""HTTP surface: health, inbound webhooks and fiscal contingency."""

from tether.api.app import create_app

__all__ = ["create_app"]
