"""Application settings for crpt-api."""

import os
from pathlib import Path
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from crpt_api.admission import RateLimitConfig
from crpt_api.runtime_config import current_runtime_config, runtime_env_overrides


class Settings(BaseSettings):
    """Runtime settings for the registry client."""

    model_config = SettingsConfigDict(
        env_prefix="CRPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    base_url: str = "https://ismp.crpt.ru"
    timeout_s: float = 10.0
    window_unit: str = "second"
    max_requests_per_window: int = 5
    signature: str = ""
    signature_file: str = ""

    def rate_limit(self) -> RateLimitConfig:
        """Validated rate-limit config; raises `ConfigurationError` on bad values."""
        return RateLimitConfig(
            window_unit=self.window_unit,
            max_requests_per_window=self.max_requests_per_window,
        )

    @staticmethod
    def _parse_signature_file(path: Path) -> str:
        try:
            raw = path.read_text(encoding="utf-8").strip()
        except OSError:
            return ""
        if not raw:
            return ""
        first_line = raw.splitlines()[0].strip()
        if "=" in first_line:
            key_name, value = first_line.split("=", 1)
            if key_name.strip().upper() != "CRPT_SIGNATURE":
                return ""
            return value.strip().strip('"').strip("'")
        return first_line.strip('"').strip("'")

    def resolve_signature(self) -> str:
        """Signature from settings, falling back to the configured signature file."""
        if self.signature.strip():
            return self.signature.strip()
        if not self.signature_file:
            return ""
        path = Path(self.signature_file).expanduser()
        if not path.is_file():
            return ""
        return self._parse_signature_file(path)

    @classmethod
    def from_runtime(cls, **overrides: Any) -> "Settings":
        """Construct settings from runtime config, `CRPT_` env and explicit overrides.

        Precedence, highest first: non-None ``overrides`` (CLI flags), `CRPT_`
        process env, the runtime config file, field defaults.
        """
        runtime = current_runtime_config()
        values: dict[str, Any] = {}
        for env_key, value in runtime_env_overrides(runtime).items():
            if os.environ.get(env_key, "").strip():
                continue
            values[env_key.removeprefix("CRPT_").lower()] = value
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
