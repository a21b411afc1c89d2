import os


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///phoneprov.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    STAGING_AUTH_USER = os.getenv("STAGING_AUTH_USER", "provisioning")
    STAGING_AUTH_PASS = os.getenv("STAGING_AUTH_PASS", "")

    PROVISION_CERT_DIR = os.getenv("PROVISION_CERT_DIR", "certificates")
    PROVISION_SERVER_URL = os.getenv("PROVISION_SERVER_URL", "")
    PROVISION_REQUIRE_VENDOR_UA = _env_flag("PROVISION_REQUIRE_VENDOR_UA", "1")
    PROVISION_VENDOR_UA = os.getenv("PROVISION_VENDOR_UA", "Yealink")

    DEFAULT_TARGET_NAME = os.getenv("DEFAULT_TARGET_NAME", "Customer-Based")
    VERSION_ALLOCATION_ATTEMPTS = int(os.getenv("VERSION_ALLOCATION_ATTEMPTS", "5"))

    CONFIG_RETENTION_DAYS = int(os.getenv("CONFIG_RETENTION_DAYS", "90"))
    PROVISION_LOG_RETENTION_DAYS = int(os.getenv("PROVISION_LOG_RETENTION_DAYS", "30"))


class DevConfig(Config):
    DEBUG = True
    LOG_LEVEL = "DEBUG"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    STAGING_AUTH_PASS = ""
    PROVISION_SERVER_URL = ""
