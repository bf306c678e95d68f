"""
Application configuration loaded from environment variables / backend/.env
"""
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


# MongoDB
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "event_admin")
TRAINING_MODE = _env_bool("TRAINING_MODE")
# Multi-document transactions need a replica set; standalone servers must leave this off
MONGO_TRANSACTIONS = _env_bool("MONGO_TRANSACTIONS")

# Push delivery service
PUSH_SERVICE_URL = os.environ.get("PUSH_SERVICE_URL", "http://localhost:3000/api/notifications/send")
PUSH_SERVICE_TOKEN = os.environ.get("PUSH_SERVICE_TOKEN", "")
PUSH_TIMEOUT_SECONDS = float(os.environ.get("PUSH_TIMEOUT_SECONDS", "10"))

# Orders
ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")
ORDER_NUMBER_LENGTH = int(os.environ.get("ORDER_NUMBER_LENGTH", "3"))
SHOP_ORDER_PREFIX = os.environ.get("SHOP_ORDER_PREFIX", "SO")
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "XAF")
ORDER_WRITE_RETRIES = int(os.environ.get("ORDER_WRITE_RETRIES", "5"))

# Messaging
MESSAGE_MAX_LENGTH = int(os.environ.get("MESSAGE_MAX_LENGTH", "2000"))
MESSAGE_PREVIEW_LENGTH = 100

# Scheduler
ENABLE_SCHEDULER = _env_bool("ENABLE_SCHEDULER", "true")
SCHEDULED_NOTIFICATION_INTERVAL_SECONDS = int(os.environ.get("SCHEDULED_NOTIFICATION_INTERVAL_SECONDS", "60"))

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
