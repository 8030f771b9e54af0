import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


def _clean_env(v):
    return (v or "").strip().strip("'").strip('"')


def _flag(name, default="false"):
    return _clean_env(os.getenv(name, default)).lower() in ("1", "true", "yes", "on")


APP_ENV = _clean_env(os.getenv("APP_ENV") or "production").lower()
LOG_LEVEL = _clean_env(os.getenv("LOG_LEVEL") or "INFO").upper()

DATABASE_URL = _clean_env(os.getenv("DATABASE_URL") or "sqlite:///./aecoin_store.db")

JWT_SECRET = _clean_env(os.getenv("JWT_SECRET"))

# All prices are quoted and charged in this currency
STORE_CURRENCY = _clean_env(os.getenv("STORE_CURRENCY") or "MYR").upper()

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY"))
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET"))

TOYYIBPAY_BASE_URL = _clean_env(os.getenv("TOYYIBPAY_BASE_URL") or "https://toyyibpay.com").rstrip("/")
TOYYIBPAY_SECRET_KEY = _clean_env(os.getenv("TOYYIBPAY_SECRET_KEY"))
TOYYIBPAY_CATEGORY_CODE = _clean_env(os.getenv("TOYYIBPAY_CATEGORY_CODE"))
TOYYIBPAY_TIMEOUT = float(os.getenv("TOYYIBPAY_TIMEOUT") or 20)

# Lets POST /api/orders/complete re-query the provider when no webhook arrived
PAYMENT_STATUS_FALLBACK = _flag("PAYMENT_STATUS_FALLBACK", "true")

# Redemption code policy
CODE_PREFIX = _clean_env(os.getenv("CODE_PREFIX") or "AE").upper()
CODE_ENCODE_DENOMINATION = _flag("CODE_ENCODE_DENOMINATION", "true")
CODE_BONUS_AMOUNT = int(os.getenv("CODE_BONUS_AMOUNT") or 0)
CODE_BLOCKS = int(os.getenv("CODE_BLOCKS") or 3)
CODE_BLOCK_LENGTH = int(os.getenv("CODE_BLOCK_LENGTH") or 4)

# Game server database receiving issued codes; empty disables provisioning
GAME_DATABASE_URL = _clean_env(os.getenv("GAME_DATABASE_URL"))
GAME_CODES_TABLE = _clean_env(os.getenv("GAME_CODES_TABLE") or "redemption_codes")

SMTP_HOST = _clean_env(os.getenv("SMTP_HOST"))
SMTP_PORT = int(os.getenv("SMTP_PORT") or 587)
SMTP_USER = _clean_env(os.getenv("SMTP_USER"))
SMTP_PASSWORD = _clean_env(os.getenv("SMTP_PASSWORD"))
SMTP_FROM = _clean_env(os.getenv("SMTP_FROM") or "no-reply@aecoin.store")


def is_development():
    return APP_ENV == "development"
