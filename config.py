"""
Configuration

Settings for the RingCentral → Salesforce call sync, read from the
environment (and a local .env file when present).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _csv(name: str, default: str) -> list:
    return [p.strip() for p in os.getenv(name, default).split(",") if p.strip()]


# --- RingCentral ---
RC_SERVER = os.getenv("RC_SERVER", "https://platform.ringcentral.com").rstrip("/")
RC_CLIENT_ID = os.getenv("RC_CLIENT_ID")
RC_CLIENT_SECRET = os.getenv("RC_CLIENT_SECRET")
RC_JWT_TOKEN = os.getenv("RC_JWT_TOKEN")

# --- Salesforce (JWT bearer flow) ---
SF_LOGIN_URL = os.getenv("SF_LOGIN_URL", "https://login.salesforce.com").rstrip("/")
SF_CONSUMER_KEY = os.getenv("SF_CONSUMER_KEY")
SF_USERNAME = os.getenv("SF_USERNAME")
SF_PRIVATE_KEY = os.getenv("SF_PRIVATE_KEY", "").replace("\\n", "\n")
SF_API_VERSION = os.getenv("SF_API_VERSION", "61.0").lstrip("v")

# Pre-issued token alternative (skips the JWT exchange)
SALESFORCE_INSTANCE_URL = os.getenv("SALESFORCE_INSTANCE_URL")
SALESFORCE_ACCESS_TOKEN = os.getenv("SALESFORCE_ACCESS_TOKEN")
SALESFORCE_USER_ID = os.getenv("SALESFORCE_USER_ID")

# --- Sync behaviour ---
CALL_SYNC_PAGE_SIZE = int(os.getenv("CALL_SYNC_PAGE_SIZE", "50"))
CALL_SYNC_MAX_PAGES = int(os.getenv("CALL_SYNC_MAX_PAGES", "20"))
CALL_SYNC_INTERVAL_MINUTES = int(os.getenv("CALL_SYNC_INTERVAL_MINUTES", "15"))
CALL_SYNC_SCHEDULER_ENABLED = os.getenv("CALL_SYNC_SCHEDULER_ENABLED", "1") == "1"
CALL_SYNC_STATE_FILE = os.getenv("CALL_SYNC_STATE_FILE")
INITIAL_LOOKBACK_HOURS = int(os.getenv("INITIAL_LOOKBACK_HOURS", "24"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
EXISTENCE_CHUNK_SIZE = int(os.getenv("EXISTENCE_CHUNK_SIZE", "50"))

# Leg "to" names starting with these are departments/queues, not people
GENERIC_NAME_PREFIXES = _csv(
    "GENERIC_NAME_PREFIXES", "corporate,gear,stores,health,pk,customer service"
)
GENERIC_EXTENSION_PREFIXES = _csv(
    "GENERIC_EXTENSION_PREFIXES",
    "corporate,gear,stores,health,pk,customer service,accounts? receivable",
)

# --- Server ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "5000"))
