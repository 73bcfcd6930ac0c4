import os

from dotenv import load_dotenv

load_dotenv(override=False)


def env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config(object):
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_NAME = os.environ.get("DATABASE_NAME")

    ADMIN_KEY = os.environ.get("ADMIN_KEY") or "demo-admin-key"

    RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID") or ""
    RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET") or ""
    # Only honoured when Razorpay keys are missing
    ALLOW_TEST_PAYMENTS = env_flag("ALLOW_TEST_PAYMENTS")
    GATEWAY_TIMEOUT = float(os.environ.get("GATEWAY_TIMEOUT") or 10)

    CURRENCY = os.environ.get("CURRENCY") or "INR"
    STORE_NAME = os.environ.get("STORE_NAME") or "DressHub"
    DELIVERY_DAYS = int(os.environ.get("DELIVERY_DAYS") or 7)

    LOG_LEVEL = os.environ.get("LOG_LEVEL") or "INFO"
    LOG_FILE = os.environ.get("LOG_FILE")

    PORT = int(os.environ.get("PORT") or 8000)
