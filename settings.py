from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_TABLE_NAME_ENV = "READINGS_TABLE_NAME"
_TABLE_PATH_ENV = "READINGS_PERSISTENCE_PATH"
_ALERT_WORKERS_ENV = "ALERT_WORKER_COUNT"
_NOTIFY_WORKERS_ENV = "NOTIFY_WORKER_COUNT"
_SEND_TIMEOUT_ENV = "NOTIFY_SEND_TIMEOUT_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_RECIPIENTS_ENV = "ALERT_RECIPIENTS"
_SMTP_HOST_ENV = "SMTP_HOST"
_SMTP_PORT_ENV = "SMTP_PORT"
_SMTP_SENDER_ENV = "SMTP_SENDER"
_SMTP_USERNAME_ENV = "SMTP_USERNAME"
_SMTP_PASSWORD_ENV = "SMTP_PASSWORD"
_COMPANY_NAME_ENV = "COMPANY_NAME"
_EVENT_BUFFER_ENV = "EVENT_BUFFER_SIZE"


@dataclass(frozen=True)
class Settings:
    table_name: str
    table_persistence_path: Optional[str]
    alert_workers: int
    notify_workers: int
    send_timeout_seconds: float
    log_level: str
    alert_recipients: tuple[str, ...]
    smtp_host: Optional[str]
    smtp_port: int
    smtp_sender: str
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    company_name: str
    event_buffer_size: int


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


def _read_recipients() -> tuple[str, ...]:
    value = os.getenv(_RECIPIENTS_ENV) or ""
    addresses = (part.strip() for part in value.split(","))
    return tuple(address for address in addresses if address)


@lru_cache
def get_settings() -> Settings:
    return Settings(
        table_name=_read_str_env(_TABLE_NAME_ENV, "readings"),
        table_persistence_path=_read_optional_env(_TABLE_PATH_ENV, None),
        alert_workers=_read_positive_int(_ALERT_WORKERS_ENV, 4),
        notify_workers=_read_positive_int(_NOTIFY_WORKERS_ENV, 8),
        send_timeout_seconds=_read_positive_float(_SEND_TIMEOUT_ENV, 30.0),
        log_level=_read_log_level("INFO"),
        alert_recipients=_read_recipients(),
        smtp_host=_read_optional_env(_SMTP_HOST_ENV, None),
        smtp_port=_read_positive_int(_SMTP_PORT_ENV, 587),
        smtp_sender=_read_str_env(_SMTP_SENDER_ENV, "alerts@localhost"),
        smtp_username=_read_optional_env(_SMTP_USERNAME_ENV, None),
        smtp_password=_read_optional_env(_SMTP_PASSWORD_ENV, None),
        company_name=_read_str_env(_COMPANY_NAME_ENV, "Smart Environment Monitor"),
        event_buffer_size=_read_positive_int(_EVENT_BUFFER_ENV, 100),
    )
