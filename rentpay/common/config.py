"""Central environment-driven settings for the payments service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "rentpay-payments"
    environment: str = "development"
    log_level: str = "INFO"
    database_url: str
    db_timeout_seconds: float = 5.0
    redis_url: str = "redis://redis:6379/0"
    api_key: str
    trusted_proxy_ips: str = ""
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    otel_sample_ratio: float = 1.0

    mpesa_api_base: str = "https://sandbox.safaricom.co.ke"
    mpesa_consumer_key: str
    mpesa_consumer_secret: str
    mpesa_short_code: str
    mpesa_passkey: str
    mpesa_callback_url: str
    mpesa_callback_secret: str
    mpesa_callback_allowed_ips: str = ""
    mpesa_timeout_seconds: float = 10.0
    mpesa_token_ttl_seconds: int = 3500
    mpesa_token_expiry_margin_seconds: int = 100
    mpesa_transaction_type: str = "CustomerPayBillOnline"
    mpesa_account_reference: str = "Pandora Gardens"
    mpesa_transaction_desc: str = "Payment for services"

    # Safaricom mobile numbers in international format: 2547XXXXXXXX / 2541XXXXXXXX.
    phone_pattern: str = r"^254(7\d{8}|1\d{8})$"
    max_amount: int = 250_000
    rate_limit_requests: int = 5
    rate_limit_window_seconds: int = 60
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def callback_allowed_ips_set(self) -> set[str]:
        return {ip.strip() for ip in self.mpesa_callback_allowed_ips.split(",") if ip.strip()}


settings = CommonSettings()
