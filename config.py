import os
from dotenv import load_dotenv

load_dotenv()  # Make sure .env variables are loaded


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "library_db")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")  # override in .env
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = _int("ACCESS_TOKEN_EXPIRE_MINUTES", 60)

# Comma-separated list of allowed CORS origins
ORIGINS = [o.strip() for o in os.getenv("ORIGINS", "*").split(",") if o.strip()]

# Lending rules
LOAN_PERIOD_DAYS = _int("LOAN_PERIOD_DAYS", 14)
FINE_PER_DAY = _int("FINE_PER_DAY", 5)
MAX_WRITE_RETRIES = _int("MAX_WRITE_RETRIES", 5)

# 0 disables the background sweep; the admin endpoint still works
OVERDUE_SWEEP_INTERVAL_MINUTES = _int("OVERDUE_SWEEP_INTERVAL_MINUTES", 0)

# Outbound mail. Without SMTP_HOST overdue notices are only logged.
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = _int("SMTP_PORT", 587)
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
