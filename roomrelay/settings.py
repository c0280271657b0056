import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("SECRET_KEY", "django-insecure-room-relay-dev-key")

DEBUG = os.getenv("DEBUG", "1") == "1"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(",")

RELAY_ENV = os.getenv("RELAY_ENV", "development")

# Origins permitted to open a websocket; production only trusts CLIENT_URL
if RELAY_ENV == "production":
    RELAY_ALLOWED_ORIGINS = [os.getenv("CLIENT_URL", "")]
else:
    RELAY_ALLOWED_ORIGINS = ["http://localhost:3000"]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 5000))

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "channels",
    "rooms",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "roomrelay.urls"

ASGI_APPLICATION = "roomrelay.asgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("RELAY_DB_PATH", str(BASE_DIR / "webrtc.db")),
        "OPTIONS": {
            "init_command": "PRAGMA journal_mode=WAL; PRAGMA synchronous=NORMAL; PRAGMA cache_size=-64000;",
        },
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

USE_TZ = True
TIME_ZONE = "UTC"

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "UNAUTHENTICATED_USER": None,
}

# Reclamation of long-offline members, in seconds
RELAY_SWEEP_INTERVAL = int(os.getenv("RELAY_SWEEP_INTERVAL", 300))
RELAY_OFFLINE_RETENTION = int(os.getenv("RELAY_OFFLINE_RETENTION", 3600))

ICE_SERVERS = [{"urls": os.getenv("STUN_URL", "stun:stun.l.google.com:19302")}]
if os.getenv("TURN_URL"):
    ICE_SERVERS.append({
        "urls": os.getenv("TURN_URL"),
        "username": os.getenv("TURN_USERNAME", ""),
        "credential": os.getenv("TURN_CREDENTIAL", ""),
    })

WEBRTC_CONFIG = {"iceServers": ICE_SERVERS}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}
