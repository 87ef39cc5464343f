"""
ROS – Django Settings (Infrastructure Only)
============================================
Django serves as the HTTP container for ROS.
ROS architecture is the authority — Django does not dictate structure.

Restaurant and gateway settings for the dev wiring come from the
environment; engines never read these directly.
"""

import json
import os
from pathlib import Path

# ── Paths ─────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# ── Security ──────────────────────────────────────────────────
SECRET_KEY = os.environ.get("ROS_SECRET_KEY", "ros-dev-key-replace-before-deployment")

DEBUG = os.environ.get("ROS_DEBUG", "1") == "1"

ALLOWED_HOSTS = [h for h in os.environ.get("ROS_ALLOWED_HOSTS", "").split(",") if h]

# ── Installed Apps ────────────────────────────────────────────
# No models: ROS stores live in memory behind the adapter wiring.
INSTALLED_APPS: list = []

# ── Middleware ────────────────────────────────────────────────
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

APPEND_SLASH = False

# ── URL & WSGI ────────────────────────────────────────────────
ROOT_URLCONF = "config.urls"

DATABASES = {}

# ── Internationalization ──────────────────────────────────────
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ── Logging ───────────────────────────────────────────────────
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "ros": {"handlers": ["console"], "level": os.environ.get("ROS_LOG_LEVEL", "INFO")},
    },
}

# ── ROS restaurant (dev wiring) ───────────────────────────────
ROS_RESTAURANT_NAME = os.environ.get("ROS_RESTAURANT_NAME", "ROS Dev Restaurant")
# "lat,lon"
ROS_RESTAURANT_ORIGIN = (
    tuple(float(v) for v in os.environ["ROS_RESTAURANT_ORIGIN"].split(","))
    if os.environ.get("ROS_RESTAURANT_ORIGIN") else None
)
# (zone_id, radius_km, fee in minor units)
ROS_DELIVERY_ZONES = (
    ("near", 3.0, 500),
    ("mid", 6.0, 900),
    ("far", 10.0, 1500),
)
ROS_LOYALTY_ENABLED = os.environ.get("ROS_LOYALTY_ENABLED", "0") == "1"
ROS_LOYALTY_POINTS_PER_UNIT = os.environ.get("ROS_LOYALTY_POINTS_PER_UNIT", "1")
ROS_LOYALTY_REDEMPTION_VALUE = os.environ.get("ROS_LOYALTY_REDEMPTION_VALUE", "0.01")

# ── ROS integrations ──────────────────────────────────────────
ROS_QR_GATEWAY = os.environ.get("ROS_QR_GATEWAY", "")
# {"mercadopago": {"access_token": "...", "webhook_secret": "..."}}
ROS_GATEWAY_CREDENTIALS = json.loads(os.environ.get("ROS_GATEWAY_CREDENTIALS", "{}"))
ROS_HTTP_TIMEOUT_SECONDS = float(os.environ.get("ROS_HTTP_TIMEOUT_SECONDS", "10"))
ROS_GEOCODING_ENABLED = os.environ.get("ROS_GEOCODING_ENABLED", "0") == "1"
ROS_GEOCODER_USER_AGENT = os.environ.get("ROS_GEOCODER_USER_AGENT", "ros-delivery/1.0")
ROS_WHATSAPP_SERVER_URL = os.environ.get("ROS_WHATSAPP_SERVER_URL", "")
ROS_WHATSAPP_DEVICE_ID = os.environ.get("ROS_WHATSAPP_DEVICE_ID", "default")
