"""Application settings loaded from environment variables."""

from __future__ import annotations

from datetime import timedelta, tzinfo
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings

from healthsync.domains.health.sync.codec import SampleKind, parse_kind


class Settings(BaseSettings):
    """healthsync server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback: the sync tools read and delete personal health
    # records and there is no auth layer in front of them.
    hsync_host: str = "127.0.0.1"
    hsync_port: int = 8001
    hsync_log_level: str = "info"
    hsync_allow_insecure_bind: bool = False

    # Identity of this app as recorded on the samples it writes.
    # Deletes prefer samples carrying this bundle identifier.
    app_bundle_identifier: str = "com.healthsync.engine"
    app_display_name: str = "healthsync"

    # Calendar days for daily activity are computed in this zone.
    # Empty means the system's local zone.
    local_timezone: str = ""

    # Delete matching
    delete_match_tolerance_seconds: float = 1.0

    # Background observers
    observed_kinds: list[str] = ["glucose", "steps"]

    # Audit trail
    audit_enabled: bool = True
    audit_db_path: str = "~/.healthsync/audit.db"

    def timezone(self) -> tzinfo | None:
        return ZoneInfo(self.local_timezone) if self.local_timezone else None

    def delete_tolerance(self) -> timedelta:
        return timedelta(seconds=self.delete_match_tolerance_seconds)

    def observed_sample_kinds(self) -> list[SampleKind]:
        return [parse_kind(k) for k in self.observed_kinds]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
