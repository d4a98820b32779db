from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _opt_float(value: Optional[str]) -> Optional[float]:
    return float(value) if value not in (None, "") else None


@dataclass(frozen=True)
class Settings:
    home: str = ".stageline"
    default_timeout: Optional[float] = None
    log_url: Optional[str] = None  # e.g. "https://ci.example.com/runs/{run_id}"
    max_output: int = 64 * 1024
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_starttls: bool = False
    mail_from: str = "stageline@localhost"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        home=env.get("STAGELINE_HOME", ".stageline"),
        default_timeout=_opt_float(env.get("STAGELINE_DEFAULT_TIMEOUT")),
        log_url=env.get("STAGELINE_LOG_URL") or None,
        max_output=int(env.get("STAGELINE_MAX_OUTPUT", str(64 * 1024))),
        smtp_host=env.get("STAGELINE_SMTP_HOST") or None,
        smtp_port=int(env.get("STAGELINE_SMTP_PORT", "25")),
        smtp_user=env.get("STAGELINE_SMTP_USER") or None,
        smtp_password=env.get("STAGELINE_SMTP_PASSWORD") or None,
        smtp_starttls=_flag(env.get("STAGELINE_SMTP_STARTTLS")),
        mail_from=env.get("STAGELINE_MAIL_FROM", "stageline@localhost"),
    )
