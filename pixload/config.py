"""Run configuration via environment variables."""

import time

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from pixload.engine.models import check_amount


def _default_run_id() -> str:
    return f"run-{int(time.time() * 1000):x}"


class Settings(BaseSettings):
    base_url: str = "http://localhost:8080"

    # Amounts stay strings so they reach the wire without float rounding
    transfer_amount: str = "5.00"
    initial_balance: str = "200000.00"

    scenario_name: str = "unspecified"
    run_id: str = Field(default_factory=_default_run_id)

    # Diagnostic sampling of failed webhooks
    fail_sample_pct: float = Field(default=5.0, ge=0.0, le=100.0)
    fail_sample_cap: int = Field(default=500, ge=0)

    # Clock drift margin applied to webhook occurredAt
    webhook_timestamp_skew_ms: int = 750

    request_timeout_seconds: float = Field(default=30.0, gt=0.0)

    log_level: str = "INFO"
    log_format: str = "console"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @field_validator("transfer_amount", "initial_balance")
    @classmethod
    def _check_amount(cls, value: str) -> str:
        return check_amount(value)

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {value!r}")
        return value
