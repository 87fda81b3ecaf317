import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


def _env_bool(key: str, default: str = "false") -> bool:
    return (os.getenv(key, default) or "").strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # --- Flask Core ---
    SECRET_KEY = os.getenv('SECRET_KEY', 'fallback-secret-key')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///circlelend.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- JWT (operator / scheduler endpoints) ---
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret")
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv("JWT_ACCESS_HOURS", "12")))

    # --- Ledger (lending market contract on Gnosis) ---
    ALCHEMY_API_KEY = os.getenv("ALCHEMY_API_KEY")
    LEDGER_RPC_URL = os.getenv("LEDGER_RPC_URL")
    LENDING_MARKET_ADDRESS = os.getenv("LENDING_MARKET_ADDRESS")
    LEDGER_CHAIN_ID = int(os.getenv("LEDGER_CHAIN_ID", "100"))
    # "latest" or "finalized"; deadlines are compared against this block's timestamp
    LEDGER_BLOCK_TAG = os.getenv("LEDGER_BLOCK_TAG", "latest")
    LEDGER_REQUEST_TIMEOUT = int(os.getenv("LEDGER_REQUEST_TIMEOUT", "20"))
    LEDGER_RECEIPT_TIMEOUT = int(os.getenv("LEDGER_RECEIPT_TIMEOUT", "120"))
    LEDGER_SCAN_WORKERS = int(os.getenv("LEDGER_SCAN_WORKERS", "8"))
    # Optional signer for markLoanAsDefaulted / admin overrides. Leave blank for read-only mode.
    SERVICE_ACCOUNT_PRIVATE_KEY = os.getenv("SERVICE_ACCOUNT_PRIVATE_KEY")

    # --- Telegram notifications ---
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
    TELEGRAM_API_URL = os.getenv("TELEGRAM_API_URL", "https://api.telegram.org")
    NOTIFICATION_TIMEOUT = int(os.getenv("NOTIFICATION_TIMEOUT", "10"))
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")

    # --- Members ---
    MEMBERS_FILE = os.getenv("MEMBERS_FILE", os.path.join("data", "members.json"))

    # --- Events ---
    EVENT_LOOKBACK_BLOCKS = int(os.getenv("EVENT_LOOKBACK_BLOCKS", "1000"))

    # --- Scheduler ---
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED")
    DEFAULT_SCAN_MINUTES = int(os.getenv("DEFAULT_SCAN_MINUTES", "60"))
    EVENT_POLL_MINUTES = int(os.getenv("EVENT_POLL_MINUTES", "5"))

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "standard")
