import os

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/daily_pairs")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

PAIRING_TIMEZONE = os.getenv("PAIRING_TIMEZONE", "America/Los_Angeles")
PAIRING_EXPIRY_HOUR = int(os.getenv("PAIRING_EXPIRY_HOUR", "22"))
LOOKBACK_DAYS = int(os.getenv("LOOKBACK_DAYS", "7"))
ACTIVE_WITHIN_DAYS = int(os.getenv("ACTIVE_WITHIN_DAYS", "3"))
MAX_FLAKE_STREAK = int(os.getenv("MAX_FLAKE_STREAK", "5"))
VIRTUAL_MEETING_BASE_URL = os.getenv("VIRTUAL_MEETING_BASE_URL", "https://meet.jitsi.si/DailyMeetupSelfie-")

_raw_seed = os.getenv("PAIRING_SEED", "").strip()
try:
    PAIRING_SEED: int | None = int(_raw_seed) if _raw_seed else None
except ValueError:
    PAIRING_SEED = None

MIGRATIONS_DIR = os.getenv("MIGRATIONS_DIR", "").strip()
