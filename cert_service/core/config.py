from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
ArtifactBackend = Literal["none", "memory", "drive"]

# Only for dev/test; prod refuses to start without SIGNING_MASTER_KEY.
_DEV_MASTER_KEY = "dev-only-signing-master-key"

_PACKAGE_DIR = Path(__file__).resolve().parents[1]


def _getenv(name: str, default: str) -> str:
    # Single place for env access; values are always stripped
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    signing_master_key: str
    template_path: Path
    fonts_dir: Path
    artifact_store: ArtifactBackend
    drive_folder_id: str | None
    service_account_file: Path | None
    signature_reason: str
    signature_location: str
    default_institution: str
    read_timeout_seconds: float

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")
    store_raw = _getenv("ARTIFACT_STORE", "memory").lower()
    timeout_raw = _getenv("READ_TIMEOUT_SECONDS", "5")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if store_raw not in ("none", "memory", "drive"):
        raise ValueError(
            f"ARTIFACT_STORE must be none|memory|drive (got {store_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        read_timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(
            f"READ_TIMEOUT_SECONDS must be a number (got {timeout_raw!r})"
        ) from None
    if read_timeout <= 0:
        raise ValueError(f"READ_TIMEOUT_SECONDS must be positive (got {timeout_raw!r})")

    master_key = _getenv("SIGNING_MASTER_KEY", "")
    if not master_key:
        if app_env_raw == "prod":
            raise ValueError("SIGNING_MASTER_KEY is required when APP_ENV=prod")
        master_key = _DEV_MASTER_KEY

    service_account_raw = _getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "")
    if store_raw == "drive" and not service_account_raw:
        raise ValueError("ARTIFACT_STORE=drive requires GOOGLE_SERVICE_ACCOUNT_FILE")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        signing_master_key=master_key,
        template_path=Path(
            _getenv("TEMPLATE_PATH", str(_PACKAGE_DIR / "templates" / "certificate.pdf"))
        ),
        fonts_dir=Path(_getenv("FONTS_DIR", str(_PACKAGE_DIR / "fonts"))),
        artifact_store=store_raw,
        drive_folder_id=_getenv("GOOGLE_DRIVE_FOLDER_ID", "") or None,
        service_account_file=Path(service_account_raw) if service_account_raw else None,
        signature_reason=_getenv("SIGNATURE_REASON", "Digitally signed certificate"),
        signature_location=_getenv("SIGNATURE_LOCATION", ""),
        default_institution=_getenv("DEFAULT_INSTITUTION", "Certificate Authority"),
        read_timeout_seconds=read_timeout,
    )


# Loaded once at import; tests call load_settings() directly
SETTINGS = load_settings()
