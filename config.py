import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker + result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

    # --- SMTP (email) ---
    SMTP_SERVER = os.environ.get("SMTP_SERVER")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = os.environ.get("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")
    MAIL_FROM = os.environ.get("MAIL_FROM", "Pet Claim Helper <reminders@petclaimhelper.app>")

    # --- Content ---
    APP_DASHBOARD_URL = os.environ.get("APP_DASHBOARD_URL", "https://pet-claim-helper.app/dashboard")

    # --- Timezones ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "America/Los_Angeles")
    DEADLINE_TIMEZONE = os.environ.get("DEADLINE_TIMEZONE", "UTC")
    DEADLINE_TICK_HOUR = int(os.environ.get("DEADLINE_TICK_HOUR", "16"))

    # --- Claims ---
    DEFAULT_FILING_WINDOW_DAYS = int(os.environ.get("DEFAULT_FILING_WINDOW_DAYS", "90"))

    # --- Dispatch ---
    SEND_TIMEOUT_SECONDS = float(os.environ.get("SEND_TIMEOUT_SECONDS", "10"))
    SEND_RETRY_ATTEMPTS = int(os.environ.get("SEND_RETRY_ATTEMPTS", "3"))
    SEND_RETRY_WAIT_MAX = float(os.environ.get("SEND_RETRY_WAIT_MAX", "5"))
    DISPATCH_MAX_ATTEMPTS = int(os.environ.get("DISPATCH_MAX_ATTEMPTS", "3"))
    DISPATCH_RETRY_AFTER_SECONDS = int(os.environ.get("DISPATCH_RETRY_AFTER_SECONDS", "300"))

    # --- HTTP trigger ---
    CRON_SECRET = os.environ.get("CRON_SECRET")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
