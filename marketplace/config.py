# marketplace/config.py
"""Marketplace settings read from the environment (.env supported)."""
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

# fixed platform cut on every completed sale
PLATFORM_FEE_RATE = Decimal("0.05")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

DEFAULT_AUCTION_DURATION_DAYS = int(os.getenv("DEFAULT_AUCTION_DURATION_DAYS", "7"))

CONFLICT_RETRY_TRIES = int(os.getenv("CONFLICT_RETRY_TRIES", "5"))
CONFLICT_RETRY_DELAY = float(os.getenv("CONFLICT_RETRY_DELAY", "0.01"))

AUCTION_SWEEP_ENABLED = os.getenv("AUCTION_SWEEP_ENABLED", "1") == "1"
AUCTION_SWEEP_MINUTES = int(os.getenv("AUCTION_SWEEP_MINUTES", "5"))
