"""Runtime settings read from the environment."""
import os

# Base URL recipients follow to open their signing page
SIGNING_BASE_URL = os.getenv("SIGNOFF_SIGNING_BASE_URL", "http://localhost:8000/sign").rstrip("/")

# Applied when a CreateEnvelope command omits expiration_days
DEFAULT_EXPIRATION_DAYS = int(os.getenv("SIGNOFF_DEFAULT_EXPIRATION_DAYS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Actor recorded for engine-driven events (expiration sweeps, reminders)
SYSTEM_ACTOR = "system"
