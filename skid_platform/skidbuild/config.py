import os
from dataclasses import dataclass


@dataclass(frozen=True)
class CustomerApiConfig:
    base_url: str
    token_url: str
    client_id: str
    client_secret: str
    timeout_sec: int = 30

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.token_url and self.client_id)


@dataclass(frozen=True)
class AppConfig:
    log_level: str
    admin_token: str | None
    customer_api: CustomerApiConfig


def load_customer_api_config() -> CustomerApiConfig:
    timeout = os.environ.get("CUSTOMER_API_TIMEOUT_SEC", "30")
    try:
        timeout_sec = int(timeout)
    except ValueError:
        raise SystemExit(f"CUSTOMER_API_TIMEOUT_SEC must be an integer, got {timeout!r}")
    return CustomerApiConfig(
        base_url=os.environ.get("CUSTOMER_API_BASE_URL", ""),
        token_url=os.environ.get("CUSTOMER_API_TOKEN_URL", ""),
        client_id=os.environ.get("CUSTOMER_API_CLIENT_ID", ""),
        client_secret=os.environ.get("CUSTOMER_API_CLIENT_SECRET", ""),
        timeout_sec=timeout_sec,
    )


def load_app_config() -> AppConfig:
    return AppConfig(
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        admin_token=os.environ.get("ADMIN_TOKEN") or None,
        customer_api=load_customer_api_config(),
    )
