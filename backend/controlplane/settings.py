import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() == "true"

ALLOWED_HOSTS = [host.strip() for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host.strip()]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "process_runtime.apps.ProcessRuntimeConfig",
]

DATABASE_ENGINE = os.environ.get("DATABASE_ENGINE", "sqlite").strip().lower()

if DATABASE_ENGINE == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("POSTGRES_DB", "controlplane"),
            "USER": os.environ.get("POSTGRES_USER", "controlplane"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", "controlplane"),
            "HOST": os.environ.get("POSTGRES_HOST", "db"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# Platform-wide process defaults. An optional YAML document at PROCESS_RUNTIME_CONFIG_PATH is layered on top.
PROCESS_RUNTIME = {
    "default_app_memory_mb": _env_int("DEFAULT_APP_MEMORY_MB", 1024),
    "default_app_disk_in_mb": _env_int("DEFAULT_APP_DISK_IN_MB", 1024),
    "maximum_app_disk_in_mb": _env_int("MAXIMUM_APP_DISK_IN_MB", 2048),
    "default_instances": _env_int("DEFAULT_INSTANCES", 1),
    "default_to_diego_backend": _env_bool("DEFAULT_TO_DIEGO_BACKEND", False),
    "allow_app_ssh_access": _env_bool("ALLOW_APP_SSH_ACCESS", True),
    "disable_custom_buildpacks": _env_bool("DISABLE_CUSTOM_BUILDPACKS", False),
    "docker_enabled": _env_bool("DIEGO_DOCKER_ENABLED", True),
    "default_health_check_timeout": _env_int("DEFAULT_HEALTH_CHECK_TIMEOUT", None),
    "maximum_health_check_timeout": _env_int("MAXIMUM_HEALTH_CHECK_TIMEOUT", 180),
    "instance_file_descriptor_limit": _env_int("INSTANCE_FILE_DESCRIPTOR_LIMIT", 16384),
    "default_stack": os.environ.get("DEFAULT_STACK", "cflinuxfs2"),
}
PROCESS_RUNTIME_CONFIG_PATH = os.environ.get("PROCESS_RUNTIME_CONFIG_PATH", "")

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
        "process_runtime": {
            "handlers": ["console"],
            "level": os.environ.get("PROCESS_RUNTIME_LOG_LEVEL", "INFO"),
        },
    },
}
