"""MFA policy configuration."""

import os
from dotenv import load_dotenv

load_dotenv()

# TOTP parameters (fixed to match standard authenticator apps)
TOTP_ISSUER = os.getenv("TOTP_ISSUER", "BuildDesk")
TOTP_DIGITS = 6
TOTP_INTERVAL_SECONDS = 30
TOTP_DRIFT_STEPS = 1  # one step either side, never widen

# Trusted device policy
TRUSTED_DEVICE_DAYS = int(os.getenv("TRUSTED_DEVICE_DAYS", "90"))

# Backup codes
BACKUP_CODES_COUNT = int(os.getenv("BACKUP_CODES_COUNT", "8"))
BACKUP_CODE_SEGMENT_LENGTH = 4
BACKUP_CODE_MIN_LENGTH = 6
BACKUP_CODE_MAX_LENGTH = 12
BACKUP_CODE_MAX_RETRIES = int(os.getenv("BACKUP_CODE_MAX_RETRIES", "3"))

# Datastore
DATASTORE_TIMEOUT_SECONDS = float(os.getenv("DATASTORE_TIMEOUT_SECONDS", "5"))

# Audit log queries
RECENT_EVENTS_LIMIT = int(os.getenv("RECENT_EVENTS_LIMIT", "50"))

# Factor types
FACTOR_TYPE_TOTP = "totp"
