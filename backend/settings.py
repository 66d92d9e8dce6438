import os
from pathlib import Path

from dotenv import load_dotenv

from models.common import parse_bool

# Load environment variables from .env file in the backend folder
backend_dir = Path(__file__).parent
env_path = backend_dir / ".env"
load_dotenv(env_path)

SESSION_SECRET_KEY = os.getenv("SESSION_SECRET_KEY")
if not SESSION_SECRET_KEY:  # pragma: no cover
    raise ValueError("SESSION_SECRET_KEY must be set")

API_PREFIX = os.getenv("API_PREFIX", "")
BACKEND_DIR = Path(__file__).parent
DATABASE_PATH = BACKEND_DIR / "ideacollab.sqlite"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_PATH}")
PROJECT_PATH = BACKEND_DIR.parent

TESTING_MODE = parse_bool(os.getenv("TESTING_MODE", False))  # don't wait on retries

BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:3000")
API_URL = os.getenv("API_URL", f"{BASE_URL}/api")

SLACK_TOKEN = os.getenv("SLACK_TOKEN") or None

# --- Realtime change feed ---
FEED_QUEUE_SIZE = int(os.getenv("FEED_QUEUE_SIZE", "256"))
FEED_KEEPALIVE_SECONDS = float(os.getenv("FEED_KEEPALIVE_SECONDS", "15"))
FEED_RETRY_ATTEMPTS = int(os.getenv("FEED_RETRY_ATTEMPTS", "8"))
FEED_RETRY_MAX_WAIT = float(os.getenv("FEED_RETRY_MAX_WAIT", "30"))
# a subscription that drops sooner than this counts as a failed attempt
FEED_STABLE_SECONDS = float(os.getenv("FEED_STABLE_SECONDS", "5"))

# --- Client session ---
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "0"))
RELOAD_AFTER_MUTATION = parse_bool(os.getenv("RELOAD_AFTER_MUTATION", True))
PROFILE_CACHE_SECONDS = int(os.getenv("PROFILE_CACHE_SECONDS", "600"))
