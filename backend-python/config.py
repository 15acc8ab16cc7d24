"""
Configuration Management for the Markov Cohort Model
Environment-based settings with sensible defaults
"""

import os


class Config:
    """Application configuration with environment variable overrides"""

    # Flask
    DEBUG = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    PORT = int(os.getenv("PORT", 5000))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Caching
    CACHE_MAX_SIZE = int(os.getenv("CACHE_MAX_SIZE", 256))

    # ============================================
    # COHORT MODEL DEFAULTS
    # ============================================

    DEFAULT_DISCOUNT_RATE = float(os.getenv("DEFAULT_DISCOUNT_RATE", 0.03))
    DEFAULT_CYCLES = int(os.getenv("DEFAULT_CYCLES", 60))
    MAX_CYCLES = int(os.getenv("MAX_CYCLES", 1000))

    # Probability mass must stay within this distance of 1 after every cycle
    DRIFT_TOLERANCE = float(os.getenv("DRIFT_TOLERANCE", 1e-9))
    STRICT_DRIFT = os.getenv("STRICT_DRIFT", "false").lower() == "true"

    # ============================================
    # ONE-WAY SENSITIVITY ANALYSIS
    # ============================================

    SENSITIVITY_WORKERS = int(os.getenv("SENSITIVITY_WORKERS", 1))
    SENSITIVITY_OUTCOME = os.getenv("SENSITIVITY_OUTCOME", "total_cost")
