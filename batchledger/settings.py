import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# ---------------------------------
#   .env
# ---------------------------------
# نحاول نحمّل .env من جذر المشروع (لو موجود)
env_path = BASE_DIR / ".env"
if env_path.exists():
    load_dotenv(env_path)

# ---------------------------------
#   أمان و Debug
# ---------------------------------
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "change-me-in-development-only")

DEBUG = os.getenv("DJANGO_DEBUG", "True") == "True"

_raw_hosts = os.getenv("DJANGO_ALLOWED_HOSTS", "")
if _raw_hosts.strip():
    ALLOWED_HOSTS = _raw_hosts.split()
else:
    ALLOWED_HOSTS = ["127.0.0.1", "localhost"]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "modeltranslation",
    "solo",
    "core.apps.CoreConfig",
    "inventory.apps.InventoryConfig",
    "purchases.apps.PurchasesConfig",
    "sales.apps.SalesConfig",
]

# ---------------------------------
#   قاعدة البيانات
# ---------------------------------
# sqlite افتراضيًا، ويمكن التبديل إلى PostgreSQL من .env
DB_ENGINE = os.getenv("DJANGO_DB_ENGINE", "django.db.backends.sqlite3")

if DB_ENGINE.endswith("sqlite3"):
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": os.getenv("DJANGO_DB_NAME", str(BASE_DIR / "db.sqlite3")),
            # write lock taken at BEGIN, so concurrent writers queue instead of failing mid-transaction
            "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
            # file-backed test DB: threaded tests need a shared database
            "TEST": {"NAME": os.getenv("DJANGO_TEST_DB_NAME", str(BASE_DIR / "test_db.sqlite3"))},
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": os.getenv("DJANGO_DB_NAME", "batchledger"),
            "USER": os.getenv("DJANGO_DB_USER", ""),
            "PASSWORD": os.getenv("DJANGO_DB_PASSWORD", ""),
            "HOST": os.getenv("DJANGO_DB_HOST", "localhost"),
            "PORT": os.getenv("DJANGO_DB_PORT", ""),
        }
    }

LANGUAGE_CODE = "ar"

LANGUAGES = [
    ("ar", "العربية"),
    ("en", "English"),
]

MODELTRANSLATION_DEFAULT_LANGUAGE = "ar"
MODELTRANSLATION_LANGUAGES = ("ar", "en")
MODELTRANSLATION_FALLBACK_LANGUAGES = {
    "default": ("ar", "en"),
}

TIME_ZONE = "Asia/Muscat"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------
#   المخزون
# ---------------------------------
# عدد المحاولات عند تعارض التحديثات المتزامنة (deadlock / database is locked)
INVENTORY_CONFLICT_RETRIES = int(os.getenv("INVENTORY_CONFLICT_RETRIES", "3"))

# ---------------------------------
#   Logging
# ---------------------------------
INVENTORY_LOG_LEVEL = os.getenv("INVENTORY_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "{asctime} {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        app: {
            "handlers": ["console"],
            "level": INVENTORY_LOG_LEVEL,
            "propagate": False,
        }
        for app in ("core", "inventory", "purchases", "sales")
    },
}
