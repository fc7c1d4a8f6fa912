"""
Runtime configuration for the automation engine.

Values are read from the environment once at import time.
"""

import os

# Per-action timeout in seconds (delay actions are exempt)
ACTION_TIMEOUT_SECONDS = float(os.getenv("AUTOMATION_ACTION_TIMEOUT", "30"))

# Delays up to this many seconds are slept in-process; longer delays suspend the run
MAX_INLINE_DELAY_SECONDS = float(os.getenv("AUTOMATION_MAX_INLINE_DELAY", "60"))

# Reference timezone for schedules and naive date values
DEFAULT_TIMEZONE = os.getenv("AUTOMATION_TIMEZONE", "UTC")

# HTTP timeout for outbound webhook calls
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("AUTOMATION_WEBHOOK_TIMEOUT", "15"))

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", "automations@localhost")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
