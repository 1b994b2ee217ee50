from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./retreat_billing.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Retreat Partner Billing"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Admin trigger surface (bearer token for /api/v1/billing)
    ADMIN_API_TOKEN: str = ""

    # PayPal Invoicing
    PAYPAL_MODE: str = "sandbox"  # sandbox or live
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_MERCHANT_EMAIL: str = ""
    PAYPAL_TIMEOUT_SECONDS: float = 30.0
    PAYPAL_TOKEN_REFRESH_MARGIN_SECONDS: int = 300  # Refresh 5 minutes before expiry

    # Email/SMTP Settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""  # Sender email (defaults to SMTP_USER)
    SMTP_FROM_NAME: str = "Partner Team"

    # Business rules
    BUSINESS_NAME: str = "Retreat Partners"
    CURRENCY_CODE: str = "USD"
    DEFAULT_COMMISSION_RATE: float = 15.0  # Percent, used when partner has none
    BILLING_HOLD_PERIOD_DAYS: int = 30  # Days after a retreat before it can be invoiced
    INVOICE_DUE_HOURS: int = 72  # Payment terms for consolidated invoices
    PAYMENT_OVERDUE_GRACE_DAYS: int = 7  # Days past due before an overdue alert

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "America/New_York"
    INVOICING_DAY_OF_MONTH: int = 10

    @property
    def paypal_base_url(self) -> str:
        if self.PAYPAL_MODE == "sandbox":
            return "https://api-m.sandbox.paypal.com"
        return "https://api-m.paypal.com"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
