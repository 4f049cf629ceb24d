"""Configuration management for Canvas Sync."""

import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class ApiConfig(BaseModel):
    """Canvas API configuration."""

    domain: str = ""
    base_url: Optional[str] = None
    token: str = ""
    account_id: int = 49
    per_page: int = 100

    @property
    def api_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip('/')
        return f"https://{self.domain}/api/v1"


class HttpConfig(BaseModel):
    """HTTP client configuration."""

    timeout_connect_s: int = 10
    timeout_read_s: int = 60
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator('headers', mode='before')
    @classmethod
    def set_default_headers(cls, v):
        if not v:
            return {
                "User-Agent": "canvasync/0.1 (+course export backup)",
                "Accept": "application/json",
            }
        return v


class ExportConfig(BaseModel):
    """Content export request and selection settings."""

    export_type: str = "common_cartridge"
    skip_notifications: bool = True
    include_quiz_questions: bool = False
    # Exports created before this instant are ignored as stale
    cutoff: datetime = datetime(2025, 6, 8, tzinfo=timezone.utc)
    artifact_suffix: str = ".imscc"
    # Skip create-export while a recent export is still queued or exporting
    reuse_in_progress_exports: bool = False

    @field_validator('cutoff')
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class DownloaderConfig(BaseModel):
    """Downloader configuration."""

    max_concurrent_downloads: int = Field(default=10, ge=1)
    max_retries: int = Field(default=5, ge=0)
    backoff_base_s: float = Field(default=1.0, ge=0)
    backoff_cap_s: float = Field(default=60.0, ge=0)
    chunk_size_kb: int = Field(default=1024, ge=1)
    partial_suffix: str = ".part"


class PollerConfig(BaseModel):
    """Export readiness polling configuration."""

    poll_interval_s: float = Field(default=30.0, ge=0)
    check_delay_ms: int = Field(default=250, ge=0)


class FilterConfig(BaseModel):
    """Course filter configuration."""

    csv_path: Optional[str] = None
    code_column: str = "kod"
    delimiter: str = ";"
    started_after: Optional[date] = date(2021, 1, 1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None


class Config(BaseModel):
    """Main configuration."""

    root_dir: str = "/Volumes/Backup/canvas"
    state_dir: Optional[str] = None

    api: ApiConfig = Field(default_factory=ApiConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    downloader: DownloaderConfig = Field(default_factory=DownloaderConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('state_dir', mode='before')
    @classmethod
    def set_default_state_dir(cls, v):
        if v is None:
            return str(Path.home() / ".canvasync")
        return str(v)

    @property
    def history_file(self) -> Path:
        return Path(self.state_dir) / 'downloads' / 'history.jsonl'


def apply_env_overrides(data: Dict) -> Dict:
    """Fill API credentials from the environment (and a .env file)."""
    load_dotenv()

    api = dict(data.get('api') or {})
    token = os.getenv('CANVAS_API_TOKEN')
    domain = os.getenv('CANVAS_DOMAIN')
    if token:
        api['token'] = token
    if domain:
        api['domain'] = domain
    data['api'] = api
    return data


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file and environment."""
    if config_path is None:
        config_path = str(Path.home() / ".canvasync" / "canvasync.yaml")

    config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    config = Config(**apply_env_overrides(data))

    # Ensure state directory exists
    state_dir = Path(config.state_dir)
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / 'downloads').mkdir(exist_ok=True)

    return config

