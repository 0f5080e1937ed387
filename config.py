"""
Central configuration for the accounts-payable matching pipeline.

All paths, thresholds, and collaborator settings are defined here.
A Config is an immutable snapshot: load it once per run with Config.load()
and pass it around.  Changes to the settings file take effect on the next
load, never retroactively.

Settings priority (highest wins):
  1. Keyword overrides passed to Config.load() (CLI flags, tests)
  2. config/pipeline_settings.json  (admin-editable, persisted)
  3. Environment variables
  4. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from pipeline.errors import ConfigError
from pipeline.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_VENDORS_CSV = PROJECT_ROOT / "data" / "vendors.csv"
DEFAULT_PO_CSV      = PROJECT_ROOT / "data" / "purchase_orders.csv"
DEFAULT_JOBS_CSV    = PROJECT_ROOT / "data" / "jobs.csv"
DEFAULT_OUTPUT_DIR  = PROJECT_ROOT / "output"
DEFAULT_DB_PATH     = DEFAULT_OUTPUT_DIR / "apmatch.db"
DEFAULT_CONFIG_DIR  = PROJECT_ROOT / "config"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


def _to_str_tuple(value) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(p.strip() for p in value.split(",") if p.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(p).strip() for p in value if str(p).strip())
    raise ValueError(f"not a list of strings: {value!r}")


def _to_optional_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# Every key accepted in pipeline_settings.json, with its coercion.
# Anything else in the file is rejected at load time.
_SETTINGS_TYPES = {
    "variance_cents":            _to_int,
    "dedupe_window_days":        _to_int,
    "retention_years":           _to_int,
    "draft_band_multiplier":     float,
    "min_extraction_confidence": float,
    "daily_summary_hour":        _to_int,
    "vendor_fuzzy_threshold":    _to_int,
    "max_job_suggestions":       _to_int,
    "teams_webhook_url":         _to_optional_str,
    "notification_emails":       _to_str_tuple,
    "notification_template":     str,
    "admin_ui_url":              str,
    "ai_categorization_enabled": _to_bool,
    "llm_model":                 str,
    "llm_base_url":              str,
    "retry_max_attempts":        _to_int,
    "retry_base_delay":          float,
    "retry_multiplier":          float,
}

_PATH_KEYS = {"db_path", "vendors_csv", "po_csv", "jobs_csv", "output_dir"}


@dataclass(frozen=True)
class Config:
    # --- Matching thresholds ---
    variance_cents: int = field(
        default_factory=lambda: int(os.getenv("VARIANCE_CENTS", "2500"))
    )
    # A variance above the tolerance but within tolerance * multiplier still
    # produces a draft bill (draft_then_alert) instead of a hold.
    draft_band_multiplier: float = field(
        default_factory=lambda: float(os.getenv("DRAFT_BAND_MULTIPLIER", "2"))
    )
    min_extraction_confidence: float = field(
        default_factory=lambda: float(os.getenv("MIN_EXTRACTION_CONFIDENCE", "0.5"))
    )

    # --- Deduplication / retention ---
    dedupe_window_days: int = field(
        default_factory=lambda: int(os.getenv("DEDUPE_WINDOW_DAYS", "90"))
    )
    retention_years: int = field(
        default_factory=lambda: int(os.getenv("RETENTION_YEARS", "3"))
    )

    # --- Vendor / job matching ---
    vendor_fuzzy_threshold: int = 85      # Minimum rapidfuzz score (0-100)
    max_job_suggestions: int = 5

    # --- Data source paths ---
    vendors_csv: Path = field(
        default_factory=lambda: Path(os.getenv("VENDORS_CSV", str(DEFAULT_VENDORS_CSV)))
    )
    po_csv: Path = field(
        default_factory=lambda: Path(os.getenv("PO_CSV", str(DEFAULT_PO_CSV)))
    )
    jobs_csv: Path = field(
        default_factory=lambda: Path(os.getenv("JOBS_CSV", str(DEFAULT_JOBS_CSV)))
    )

    # --- Output ---
    output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("OUTPUT_DIR", str(DEFAULT_OUTPUT_DIR)))
    )
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # --- Notifications ---
    teams_webhook_url: Optional[str] = field(
        default_factory=lambda: os.getenv("TEAMS_WEBHOOK_URL") or None
    )
    notification_emails: tuple[str, ...] = field(
        default_factory=lambda: _env_list("NOTIFICATION_EMAILS")
    )
    notification_template: str = "teams_card.json.j2"
    admin_ui_url: str = field(
        default_factory=lambda: os.getenv("ADMIN_UI_URL", "http://localhost:3000")
    )
    daily_summary_hour: int = 7           # Local hour the daily summary goes out

    # --- AI categorization (OpenAI-compatible API) ---
    ai_categorization_enabled: bool = field(
        default_factory=lambda: _env_bool("AI_CATEGORIZATION_ENABLED", False)
    )
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini")
    )
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    )
    llm_api_key: str = field(
        default_factory=lambda: os.getenv("LLM_API_KEY", "")
    )

    # --- Retry policy for external collaborator calls ---
    retry_max_attempts: int = 5
    retry_base_delay: float = 1.0         # seconds before the second attempt
    retry_multiplier: float = 2.0

    def __post_init__(self) -> None:
        problems = []
        if self.variance_cents <= 0:
            problems.append(f"variance_cents must be positive, got {self.variance_cents}")
        if self.dedupe_window_days <= 0:
            problems.append(f"dedupe_window_days must be positive, got {self.dedupe_window_days}")
        if self.retention_years <= 0:
            problems.append(f"retention_years must be positive, got {self.retention_years}")
        if self.draft_band_multiplier < 1:
            problems.append(
                f"draft_band_multiplier must be >= 1, got {self.draft_band_multiplier}"
            )
        if not 0.0 <= self.min_extraction_confidence <= 1.0:
            problems.append(
                "min_extraction_confidence must be within [0, 1], "
                f"got {self.min_extraction_confidence}"
            )
        if not 0 <= self.daily_summary_hour <= 23:
            problems.append(f"daily_summary_hour must be 0-23, got {self.daily_summary_hour}")
        if self.retry_max_attempts < 1:
            problems.append(f"retry_max_attempts must be >= 1, got {self.retry_max_attempts}")
        if self.retry_base_delay < 0 or self.retry_multiplier < 1:
            problems.append("retry delays must be non-negative with a multiplier >= 1")
        if problems:
            raise ConfigError("; ".join(problems))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, settings_file: Optional[Path] = None, **overrides) -> "Config":
        """
        Build a validated snapshot from defaults, environment, the settings
        file, and explicit overrides.

        Raises ConfigError for unknown keys or values that cannot be coerced.
        """
        if settings_file is None:
            config_dir = Path(os.getenv("CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
            settings_file = config_dir / "pipeline_settings.json"

        values = _read_settings_file(Path(settings_file))

        known = {f.name for f in fields(cls)}
        for key, val in overrides.items():
            if key not in known:
                raise ConfigError(f"Unknown configuration key: {key!r}")
            if val is None and key != "teams_webhook_url":
                continue
            values[key] = Path(val) if key in _PATH_KEYS else val

        try:
            return cls(**values)
        except ValueError as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"Invalid environment configuration: {exc}") from exc

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
        )

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)


def _read_settings_file(settings_file: Path) -> dict:
    """Return typed overrides from pipeline_settings.json, or {} if absent."""
    if not settings_file.exists():
        return {}
    try:
        with open(settings_file, encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{settings_file.name} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{settings_file.name} must contain a JSON object")

    values = {}
    for key, val in raw.items():
        if key.startswith("_"):
            continue
        converter = _SETTINGS_TYPES.get(key)
        if converter is None:
            raise ConfigError(f"Unknown key {key!r} in {settings_file.name}")
        try:
            values[key] = converter(val)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {key!r} in {settings_file.name}: {exc}") from exc

    logger.info("Loaded %d setting override(s) from %s", len(values), settings_file)
    return values
