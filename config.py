import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///settlement.db")
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

# Settlement
MAX_OVERPAY_PERCENT = Decimal(os.getenv("MAX_OVERPAY_PERCENT", "10"))
DUPLICATE_WINDOW_HOURS = int(os.getenv("DUPLICATE_WINDOW_HOURS", "24"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USDT")

# Получатель pool bonus (userID администратора). Если не задан - первый admin в БД
POOL_ADMIN_USER_ID = int(os.getenv("POOL_ADMIN_USER_ID")) if os.getenv("POOL_ADMIN_USER_ID") else None

# Планировщик начислений
BENEFIT_CHECK_INTERVAL = int(os.getenv("BENEFIT_CHECK_INTERVAL", "3600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
