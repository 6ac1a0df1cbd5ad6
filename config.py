import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
DATABASE_NAME: Optional[str] = os.getenv("DATABASE_NAME")

# Server
PORT: int = int(os.getenv("PORT", 8000))
APP_ENV: str = os.getenv("APP_ENV", "production")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Gamification limits
MAX_HEARTS = 5
MAX_GEMS = 999999

# Windows
PENDING_TRANSACTION_WINDOW_MINUTES = 30
COMPLETED_STATS_WINDOW_DAYS = 30


def is_development() -> bool:
    return APP_ENV == "development"
