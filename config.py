import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "fittrack")

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

FRONTEND_URL = os.getenv("FRONTEND_URL")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Number of most recent check-ins/workouts inspected when computing a streak.
# Streaks longer than this are reported as exactly this many days.
STREAK_WINDOW = int(os.getenv("STREAK_WINDOW", 30))

DEFAULT_CHECKIN_LOCATION = os.getenv("DEFAULT_CHECKIN_LOCATION", "FitTrack Downtown")
REVENUE_MONTHS_DEFAULT = int(os.getenv("REVENUE_MONTHS_DEFAULT", 6))
