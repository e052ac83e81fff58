"""Environment configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

from .models import DEFAULT_VAT_RATE

# Load environment variables from .env file
load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "beneficiaries.yaml"
DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "caretrack" / "caretrack.db"


def get_config_path() -> Path:
    """Beneficiary YAML config path (CARETRACK_CONFIG overrides the default)."""
    value = os.environ.get("CARETRACK_CONFIG")
    return Path(value) if value else DEFAULT_CONFIG_PATH


def get_db_path() -> Path:
    """SQLite database path (CARETRACK_DB_PATH overrides the default)."""
    value = os.environ.get("CARETRACK_DB_PATH")
    return Path(value) if value else DEFAULT_DB_PATH


def get_vat_rate() -> float:
    """VAT rate applied to billed amounts, as a fraction (default: 0.055)."""
    value = os.environ.get("CARETRACK_VAT_RATE")
    if not value:
        return DEFAULT_VAT_RATE
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"CARETRACK_VAT_RATE must be a number, got '{value}'")
