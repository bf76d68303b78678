# backend/bookbeauty/core/constants.py
"""
Constants for the BookBeauty booking and payment backend.
"""

BRAND_NAME = "BookBeauty"

API_TITLE = f"{BRAND_NAME} API"
API_DESCRIPTION = f"Backend API for {BRAND_NAME} - salon bookings with Mollie payments"
API_VERSION = "1.0.0"

# Money
CURRENCY = "EUR"
DEFAULT_PLATFORM_FEE_PERCENT = 8
DEFAULT_HOLD_PERCENT = 15
DEFAULT_LATE_WINDOW_HOURS = 24
PAYMENT_DESCRIPTION = f"{BRAND_NAME} booking"
UPSTREAM_ERROR_MAX_LENGTH = 320

# Mollie endpoints
MOLLIE_AUTHORIZE_URL = "https://my.mollie.com/oauth2/authorize"
MOLLIE_TOKEN_URL = "https://api.mollie.com/oauth2/tokens"
MOLLIE_ONBOARDING_DASHBOARD_URL = "https://my.mollie.com/dashboard/onboarding"
DEFAULT_MOLLIE_SCOPES = " ".join(
    [
        "payments.read",
        "payments.write",
        "refunds.read",
        "refunds.write",
        "organizations.read",
        "profiles.read",
        "onboarding.read",
        "onboarding.write",
    ]
)
MOLLIE_PROVIDER = "mollie"
PAYMENT_MODE_PLATFORM_ONLY = "platform_only"
PAYMENT_MODE_CONNECTED = "connected"

# Slots
VALID_INTERVALS = (10, 15, 20, 30, 45, 60)
DEFAULT_INTERVAL_MINUTES = 30
DEFAULT_RANGE_START = "09:00"
DEFAULT_RANGE_END = "18:00"
MIN_SERVICE_DURATION_MINUTES = 5
SAME_DAY_LEAD_MINUTES = 5
WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
