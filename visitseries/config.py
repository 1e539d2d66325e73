import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./visitseries.db")

# Frontend base URL (CORS default)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:3000"
).split(",")

# Recurrence defaults
DEFAULT_RECURRENCE_COUNT = int(os.getenv("DEFAULT_RECURRENCE_COUNT", "4"))
# Unsaved instances carry this prefix until reconciliation inserts them
PLACEHOLDER_ID_PREFIX = os.getenv("PLACEHOLDER_ID_PREFIX", "instance-")
# Editing visit #2 of a series this long suggests "apply to following visits"
PROPAGATION_SUGGEST_MIN_INSTANCES = int(os.getenv("PROPAGATION_SUGGEST_MIN_INSTANCES", "3"))

# How staff assignments are written at save time: "cascade" or "per_instance"
ASSIGNMENT_SYNC_MODE = os.getenv("ASSIGNMENT_SYNC_MODE", "cascade").lower()
if ASSIGNMENT_SYNC_MODE not in ("cascade", "per_instance"):
    import warnings

    warnings.warn(
        f"Unknown ASSIGNMENT_SYNC_MODE '{ASSIGNMENT_SYNC_MODE}', falling back to 'cascade'",
        RuntimeWarning,
        stacklevel=2,
    )
    ASSIGNMENT_SYNC_MODE = "cascade"

# Time slot grid offered in the scheduler (HH:MM, inclusive hours)
SLOT_START_HOUR = int(os.getenv("SLOT_START_HOUR", "8"))
SLOT_END_HOUR = int(os.getenv("SLOT_END_HOUR", "18"))
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "30"))

# Tenant context is supplied by the upstream auth layer
TENANT_HEADER = os.getenv("TENANT_HEADER", "X-Tenant-ID")
