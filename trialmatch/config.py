import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trialmatch.db")

# Connection pool (ignored for SQLite, which shares one file between threads)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
# SQLite waits this long for a competing writer before raising "database is locked"
SQLITE_BUSY_TIMEOUT_SECONDS = float(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))
# Statements slower than this are logged as warnings; 0 turns the listener off
DB_SLOW_QUERY_SECONDS = float(os.getenv("DB_SLOW_QUERY_SECONDS", "1.0"))

# Frontend base URL for CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Lesson times are stored in UTC; this is the zone lessons are booked in when none is given
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Australia/Sydney")

# Redis (optional) - travel time cache and arq worker
REDIS_URL = os.getenv("REDIS_URL")

# Google Distance Matrix for tutor travel times
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
GOOGLE_DISTANCE_MATRIX_URL = os.getenv(
    "GOOGLE_DISTANCE_MATRIX_URL", "https://maps.googleapis.com/maps/api/distancematrix/json"
)
TRAVEL_TIME_CACHE_SECONDS = int(os.getenv("TRAVEL_TIME_CACHE_SECONDS", "86400"))

# Cancellation reason sentiment scorer
SENTIMENT_API_URL = os.getenv("SENTIMENT_API_URL")
SENTIMENT_API_KEY = os.getenv("SENTIMENT_API_KEY")
NEUTRAL_SENTIMENT_SCORE = float(os.getenv("NEUTRAL_SENTIMENT_SCORE", "0.5"))

# Retry policy for external providers (exponential backoff)
EXTERNAL_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "8.0"))
EXTERNAL_MAX_RETRIES = int(os.getenv("EXTERNAL_MAX_RETRIES", "3"))
EXTERNAL_RETRY_BASE_SECONDS = float(os.getenv("EXTERNAL_RETRY_BASE_SECONDS", "0.5"))

# Matching
# In-person trials shorter than this only go to tutors who accept short face-to-face trials
SHORT_TRIAL_THRESHOLD_MINUTES = int(os.getenv("SHORT_TRIAL_THRESHOLD_MINUTES", "60"))
DEFAULT_SCORE = 5.0
MIN_SCORE = 0.0
MAX_SCORE = 10.0

# Reschedule priority window: the named tutor has this long to accept or decline
RESCHEDULE_PRIORITY_WINDOW_HOURS = float(os.getenv("RESCHEDULE_PRIORITY_WINDOW_HOURS", "24"))
RESCHEDULE_SWEEP_INTERVAL_MINUTES = int(os.getenv("RESCHEDULE_SWEEP_INTERVAL_MINUTES", "5"))

# Cancellation penalty policy
PENALTY_NOTICE_WINDOW_HOURS = float(os.getenv("PENALTY_NOTICE_WINDOW_HOURS", "48"))
PENALTY_BASE = float(os.getenv("PENALTY_BASE", "0.25"))
PENALTY_MAX = float(os.getenv("PENALTY_MAX", "5.0"))

# Feedback word minimums
DIAGNOSTIC_ASSESSMENT_MIN_WORDS = 40
DIAGNOSTIC_SUGGESTIONS_MIN_WORDS = 30
REFLECTION_SUMMARY_MIN_WORDS = 40
REFLECTION_PLAN_MIN_WORDS = 30
