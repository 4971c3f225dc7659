"""authguard: TOTP multi-factor verification service."""

__version__ = "1.0.0"
