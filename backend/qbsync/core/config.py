import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./qbsync.db")

SECRET_KEY = os.getenv("SECRET_KEY", "SUPER_SECRET_KEY_CHANGE_ME")  # change for production
JWT_ALGORITHM = "HS256"

QUICKBOOKS_CLIENT_ID = os.getenv("QUICKBOOKS_CLIENT_ID")
QUICKBOOKS_CLIENT_SECRET = os.getenv("QUICKBOOKS_CLIENT_SECRET")
QUICKBOOKS_REDIRECT_URI = os.getenv("QUICKBOOKS_REDIRECT_URI")
QUICKBOOKS_ENVIRONMENT = os.getenv("QUICKBOOKS_ENVIRONMENT", "sandbox")
QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN = os.getenv("QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN")
QUICKBOOKS_MINOR_VERSION = int(os.getenv("QUICKBOOKS_MINOR_VERSION", "65"))
QB_TIMEOUT = int(os.getenv("QB_TIMEOUT", "30"))

FRONTEND_REDIRECT_URL = os.getenv("FRONTEND_REDIRECT_URL", "http://localhost:3000").rstrip("/")
QUICKBOOKS_SETTINGS_PATH = os.getenv("QUICKBOOKS_SETTINGS_PATH", "/admin/settings/quickbooks")

STATE_COOKIE_SECURE = os.getenv("ENVIRONMENT", "development") == "production"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
