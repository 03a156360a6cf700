"""Embedded OpenID Connect provider that signs users in with their face."""

__version__ = "0.1.0"
