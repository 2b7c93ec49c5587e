"""
Configuration for the storefront service.

All settings come from environment variables with development defaults.
"""
import os
from decimal import Decimal


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Document store (json-server compatible REST collections)
DATA_STORE_URL = os.getenv("DATA_STORE_URL", "http://localhost:3000")
DATA_STORE_TIMEOUT = float(os.getenv("DATA_STORE_TIMEOUT", "5.0"))  # seconds

# JWT settings (must match the issuer of customer/admin tokens)
SECRET_KEY = os.getenv("SECRET_KEY", "09d25e094faa6ca2556c818166b7a9563b93f7099f6f0f4caa6cf63b88e8d3e7")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# Pricing
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.08"))
SHIPPING_COST = Decimal(os.getenv("SHIPPING_COST", "0"))
ESTIMATED_DELIVERY_DAYS = int(os.getenv("ESTIMATED_DELIVERY_DAYS", "5"))

# Inventory
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
INVENTORY_STRATEGY = os.getenv("INVENTORY_STRATEGY", "naive")  # 'naive' | 'versioned'
RESTOCK_ON_CLEAR = _flag("RESTOCK_ON_CLEAR", "false")

# Checkout
PAYMENT_DELAY_SECONDS = float(os.getenv("PAYMENT_DELAY_SECONDS", "2.0"))

# Archival and cleanup
ARCHIVE_RETENTION_DAYS = int(os.getenv("ARCHIVE_RETENTION_DAYS", "30"))
CLEANUP_INTERVAL_SECONDS = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))
AUTO_CLEANUP_ENABLED = _flag("AUTO_CLEANUP_ENABLED", "true")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
