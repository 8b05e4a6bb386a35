import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")

# MercadoPago Configuration
MERCADOPAGO_API_BASE_URL = os.getenv("MERCADOPAGO_API_BASE_URL", "https://api.mercadopago.com")
# Access token of the marketplace account that owns subscription plans and checkout preferences
MERCADOPAGO_ACCESS_TOKEN = os.getenv("MERCADOPAGO_ACCESS_TOKEN")
# Secret from the MercadoPago dashboard used to sign webhook notifications (x-signature header)
MERCADOPAGO_WEBHOOK_SECRET = os.getenv("MERCADOPAGO_WEBHOOK_SECRET")
# Every processor call is bounded; a timeout is handled like any other upstream failure
MERCADOPAGO_TIMEOUT_SECONDS = float(os.getenv("MERCADOPAGO_TIMEOUT_SECONDS", "10"))

# Public base URL of this API (used for processor notification_url / back_url values)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Authorization cache lifetime for a user's active roles
ROLE_CACHE_TTL_SECONDS = int(os.getenv("ROLE_CACHE_TTL_SECONDS", "300"))
