# backend/tests/conftest.py
"""
Pytest configuration shared by every test package.

Settings are read at import time, so the environment is pinned here before
any ``bookbeauty`` module is imported: an in-memory database, Mollie test
mode and no real credentials.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("MOLLIE_MODE", "test")
os.environ.setdefault("BOOKING_TIMEZONE", "Europe/Amsterdam")
