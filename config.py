"""
Asia Pharm storefront API - settings
"""
import os

# ============================================================
# Supabase
# ============================================================
SUPABASE_URL = os.getenv("SUPABASE_URL", "https://your-project.supabase.co").rstrip("/")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_TIMEOUT = int(os.getenv("SUPABASE_TIMEOUT", "30"))

# ============================================================
# Stores and delivery
# ============================================================
STORES = ("china", "thailand", "vietnam")

# Order numbers use the store's local calendar day (DDMM prefix)
STORE_TIMEZONE = os.getenv("STORE_TIMEZONE", "Europe/Moscow")

# Format: method -> (stores offering it, flat price in roubles, price per kg)
DELIVERY_METHODS = {
    "russian_post": (("china",), 600, 0),
    "pyaterochka":  (("china",), 500, 0),
    "air_delivery": (("thailand", "vietnam"), 0, 2000),
}

DEFAULT_DELIVERY_METHOD = {
    "china": "russian_post",
    "thailand": "air_delivery",
    "vietnam": "air_delivery",
}

PAYMENT_METHODS = ("card", "qr", "tbank")

# Free shipping from this amount (samples excluded)
FREE_SHIPPING_THRESHOLD = int(os.getenv("FREE_SHIPPING_THRESHOLD", "8000"))

# Weight used for products without one (kg)
DEFAULT_PRODUCT_WEIGHT = "0.1"

# Minimum order (samples excluded) to include a sample, china store
SAMPLES_MIN_ORDER = int(os.getenv("SAMPLES_MIN_ORDER", "3000"))

# ============================================================
# Loyalty program - cashback by lifetime spend
# ============================================================
# Format: (tier, lifetime total from, cashback rate)
LOYALTY_TIERS = [
    ("basic",         0,  0.03),   # 0 ~ 49,999 RUB     -> 3%
    ("silver",    50000,  0.05),   # 50,000 RUB and up  -> 5%
    ("gold",     100000,  0.07),   # 100,000 RUB and up -> 7%
    ("platinum", 200000,  0.10),   # 200,000 RUB and up -> 10%
]

LOYALTY_HISTORY_LIMIT = 100

# ============================================================
# Order numbering
# ============================================================
ORDER_NUMBER_MAX_ATTEMPTS = int(os.getenv("ORDER_NUMBER_MAX_ATTEMPTS", "5"))
ORDER_NUMBER_RETRY_DELAY = float(os.getenv("ORDER_NUMBER_RETRY_DELAY", "0.1"))

# ============================================================
# Notifications
# ============================================================
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Азия Фарм <info@asia-pharm.com>")

ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID", "")
ONESIGNAL_REST_API_KEY = os.getenv("ONESIGNAL_REST_API_KEY", "")

SITE_URL = os.getenv("SITE_URL", "https://asia-pharm.com").rstrip("/")
DEFAULT_LANGUAGE = "ru"
LANGUAGES = ("ru", "en", "zh", "vi")

# ============================================================
# Catalog import
# ============================================================
IMPORT_TIMEOUT = int(os.getenv("IMPORT_TIMEOUT", "30"))
IMPORT_USER_AGENT = "Asia-Pharm-Parser/1.0"

# ============================================================
# API security
# ============================================================
# CORS
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "https://asia-pharm.com").split(",")
