"""Organizer configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TEMPLATES: dict[str, str] = {
    # Author/Series/NN. Title
    "series": "%author%/%series%/%series_position%. %title%",
    "no_series": "%author%/%title%",
    "single_file": "%author%/%title%",
    # Author/Title/Part NN
    "multi_file": "%author%/%title%/Part %part_number%",
}


class OrganizerConfig(BaseSettings):
    """All organizer configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Logging --
    log_dir: Path = Path("/var/log/audiobook-organizer")
    log_level: str = "INFO"
    verbose: bool = False

    # -- Behavior --
    dry_run: bool = False
    move_files: bool = False
    overwrite_existing: bool = False
    write_tags: bool = False

    # -- Concurrency --
    concurrency: int = 2
    file_concurrency: int = 2

    # -- Scanner --
    max_scan_depth: int = 10
    follow_symlinks: bool = True
    include_hidden: bool = False
    min_file_size: int = 1024 * 1024
    max_file_size: int = 5 * 1024 * 1024 * 1024
    exclude_patterns: list[str] = ["node_modules", "$RECYCLE.BIN"]

    # -- Matching --
    match_threshold: float = 0.7
    auto_confirm_threshold: float = 0.9

    # -- Metadata provider --
    audnexus_base_url: str = "https://api.audnex.us"
    audnexus_region: str = "us"
    provider_timeout: float = 10.0

    # -- Error recovery --
    max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 10.0

    # -- Path templates (empty = built-in default) --
    template_series: str = ""
    template_no_series: str = ""
    template_single_file: str = ""
    template_multi_file: str = ""

    @property
    def templates(self) -> dict[str, str]:
        """Built-in templates with any configured overrides applied."""
        merged = dict(DEFAULT_TEMPLATES)
        for name in DEFAULT_TEMPLATES:
            override = getattr(self, f"template_{name}")
            if override:
                merged[name] = override
        return merged

    def setup_logging(self) -> None:
        """Configure loguru for the organizer."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "organizer.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
