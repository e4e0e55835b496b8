"""Run configuration for the compliance checker.

Configuration is loaded from:
- environment variables (GitHub Actions exposes workflow inputs as ``INPUT_<NAME>``)
- and a local `.env` file (if present)

Required inputs: ``INPUT_DAYS``, ``INPUT_ORG``, ``INPUT_REPO``, ``INPUT_TOKEN``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from org_email_compliance.github.client import DEFAULT_BASE_URL
from org_email_compliance.github.throttle import BackoffPolicy


class ComplianceSettings(BaseSettings):
    """Settings for one compliance run.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `ComplianceSettings(_env_file=path_to_env)`.
    """

    # Required values default to empty so `ComplianceSettings()` type-checks; the
    # validator below rejects a run where any of them is missing.
    days: int | None = Field(
        default=None,
        ge=0,
        description="Days before an existing tracking issue is replaced by a new one",
    )
    org: str = Field(default="", description="Organization whose members are scanned")
    repo: str = Field(default="", description="Repository where tracking issues are filed")
    token: str = Field(default="", description="GitHub token used for API authentication")

    dry_run: bool = Field(
        default=False,
        description="Log the decisions without closing or creating issues",
    )
    honor_bot_label: bool = Field(
        default=False,
        description="Opt in: stop notifying members whose latest issue carries the bot-account label",
    )
    max_rate_limit_retries: int = Field(default=1, ge=0)
    max_abuse_retries: int = Field(default=1, ge=0)

    github_base_url: str = Field(
        default=DEFAULT_BASE_URL,
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="Log line format",
    )

    model_config = SettingsConfigDict(
        env_prefix="INPUT_",
        env_file=".env",
        extra="ignore",
        str_strip_whitespace=True,
    )

    @field_validator("days", mode="before")
    @classmethod
    def _strip_days(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @model_validator(mode="after")
    def _require_inputs(self) -> ComplianceSettings:
        missing = [
            f"INPUT_{name.upper()}"
            for name, value in (
                ("days", self.days),
                ("org", self.org),
                ("repo", self.repo),
                ("token", self.token),
            )
            if value is None or value == ""
        ]
        if missing:
            raise ValueError(f"Input required and not supplied: {', '.join(missing)}")
        return self

    @property
    def stale_days(self) -> int:
        return self.days or 0

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_rate_limit_retries=self.max_rate_limit_retries,
            max_abuse_retries=self.max_abuse_retries,
        )
