"""
TicketScan Configuration
========================

Tunable constants for the extraction pipeline, read from config/config.ini
with configparser. Every key has a fallback, so a missing file or section
simply yields the defaults. Secrets (the cloud API key) come only from the
environment.
"""

import configparser
import os
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from ticketscan.errors import ConfigurationError

DEFAULT_CONFIG_PATH = os.path.join("config", "config.ini")

DEFAULT_GAME_PRIORITY = [
    "us_mega_millions",
    "us_powerball",
    "us_lotto_america",
    "us_cash4life",
    "euromillions",
    "uk_lotto",
    "irish_lotto",
    "italian_superenalotto",
    "french_lotto",
    "au_oz_lotto",
    "au_powerball",
    "ca_lotto_max",
    "ca_lotto_649",
    "brazil_mega_sena",
    "mexico_melate",
    "south_africa_lotto",
    "japan_lotto",
    "spanish_lottery",
    "german_lotto",
    "au_saturday_lotto",
]


@dataclass
class ScanSettings:
    # Segmentation
    grid_row_tolerance: float = 0.02
    line_row_tolerance: float = 0.015
    grid_min_text_height: float = 0.01
    line_min_text_height: float = 0.015
    cell_padding_px: int = 18

    # Per-cell recognition
    digit_min_text_height: float = 0.0035
    digit_upscale_factor: int = 3
    alternate_candidates: int = 5
    max_workers: int = 8
    tesseract_lang: str = "eng"

    # Orchestration
    default_game_id: str = "us_mega_millions"
    min_regular_yield: int = 5
    min_special_yield: int = 1
    source_tag: str = "OCR"
    game_priority: List[str] = field(default_factory=lambda: list(DEFAULT_GAME_PRIORITY))

    # Cloud vision
    cloud_model: str = "gpt-4o"
    cloud_base_url: str = "https://api.openai.com/v1"
    cloud_timeout_seconds: float = 60.0
    cloud_max_tokens: int = 3000
    row_count_max_tokens: int = 50

    # Upload encoding
    upload_max_width: int = 1024
    upload_max_height: int = 1024
    upload_initial_quality: float = 0.8
    upload_quality_step: float = 0.1
    upload_min_quality: float = 0.1
    upload_max_kb: int = 500

    # Connectivity
    connectivity_probe_url: str = "https://api.openai.com"
    connectivity_timeout_seconds: float = 3.0

    @property
    def cloud_completions_url(self) -> str:
        return f"{self.cloud_base_url.rstrip('/')}/chat/completions"


def _resolve_config_path(config_path: Optional[str]) -> Optional[str]:
    if config_path:
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Config file not found: {config_path}")
        return config_path

    paths_to_try = [
        os.path.join(os.path.dirname(__file__), "..", "config", "config.ini"),
        os.path.join(os.getcwd(), DEFAULT_CONFIG_PATH),
    ]
    for path in paths_to_try:
        if os.path.exists(path):
            return path
    logger.warning(f"Config file not found. Tried paths: {paths_to_try}")
    return None


def load_settings(config_path: Optional[str] = None) -> ScanSettings:
    """
    Load pipeline settings from an INI file.

    Args:
        config_path: Explicit path to the INI file. When omitted the
            package-relative and working-directory config/config.ini are tried.

    Returns:
        ScanSettings populated from the file, defaults for anything missing.

    Raises:
        ConfigurationError: If an explicit config_path does not exist, or a
            value cannot be converted to its type.
    """
    defaults = ScanSettings()
    path = _resolve_config_path(config_path)
    if path is None:
        return defaults

    config = configparser.ConfigParser()
    config.read(path)
    logger.info(f"Configuration loaded from: {path}")

    try:
        priority_raw = config.get("games", "priority", fallback="")
        priority = [g.strip() for g in priority_raw.split(",") if g.strip()] or defaults.game_priority

        return ScanSettings(
            grid_row_tolerance=config.getfloat("segmentation", "grid_row_tolerance", fallback=defaults.grid_row_tolerance),
            line_row_tolerance=config.getfloat("segmentation", "line_row_tolerance", fallback=defaults.line_row_tolerance),
            grid_min_text_height=config.getfloat("segmentation", "grid_min_text_height", fallback=defaults.grid_min_text_height),
            line_min_text_height=config.getfloat("segmentation", "line_min_text_height", fallback=defaults.line_min_text_height),
            cell_padding_px=config.getint("segmentation", "cell_padding_px", fallback=defaults.cell_padding_px),
            digit_min_text_height=config.getfloat("recognition", "digit_min_text_height", fallback=defaults.digit_min_text_height),
            digit_upscale_factor=config.getint("recognition", "digit_upscale_factor", fallback=defaults.digit_upscale_factor),
            alternate_candidates=config.getint("recognition", "alternate_candidates", fallback=defaults.alternate_candidates),
            max_workers=config.getint("recognition", "max_workers", fallback=defaults.max_workers),
            tesseract_lang=config.get("recognition", "tesseract_lang", fallback=defaults.tesseract_lang),
            default_game_id=config.get("games", "default_game_id", fallback=defaults.default_game_id),
            min_regular_yield=config.getint("orchestration", "min_regular_yield", fallback=defaults.min_regular_yield),
            min_special_yield=config.getint("orchestration", "min_special_yield", fallback=defaults.min_special_yield),
            source_tag=config.get("orchestration", "source_tag", fallback=defaults.source_tag),
            game_priority=priority,
            cloud_model=config.get("cloud", "model", fallback=defaults.cloud_model),
            cloud_base_url=os.getenv("OPENAI_BASE_URL") or config.get("cloud", "base_url", fallback=defaults.cloud_base_url),
            cloud_timeout_seconds=config.getfloat("cloud", "timeout_seconds", fallback=defaults.cloud_timeout_seconds),
            cloud_max_tokens=config.getint("cloud", "max_tokens", fallback=defaults.cloud_max_tokens),
            row_count_max_tokens=config.getint("cloud", "row_count_max_tokens", fallback=defaults.row_count_max_tokens),
            upload_max_width=config.getint("upload", "max_width", fallback=defaults.upload_max_width),
            upload_max_height=config.getint("upload", "max_height", fallback=defaults.upload_max_height),
            upload_initial_quality=config.getfloat("upload", "initial_quality", fallback=defaults.upload_initial_quality),
            upload_quality_step=config.getfloat("upload", "quality_step", fallback=defaults.upload_quality_step),
            upload_min_quality=config.getfloat("upload", "min_quality", fallback=defaults.upload_min_quality),
            upload_max_kb=config.getint("upload", "max_kb", fallback=defaults.upload_max_kb),
            connectivity_probe_url=config.get("connectivity", "probe_url", fallback=defaults.connectivity_probe_url),
            connectivity_timeout_seconds=config.getfloat("connectivity", "timeout_seconds", fallback=defaults.connectivity_timeout_seconds),
        )
    except ValueError as e:
        logger.error(f"Invalid value in {path}: {e}")
        raise ConfigurationError(f"Invalid value in {path}: {e}") from e


def get_api_key() -> str:
    """
    Get the cloud vision API key from the environment.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set.
    """
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable is required")
    return api_key
