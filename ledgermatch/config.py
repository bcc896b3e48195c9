"""YAML configuration loader for ledgermatch.

Loads the seed config files from the config/ directory:
  platforms.yaml  ordered payment platforms and their bank-text patterns
  matching.yaml   suggestion window and tolerances
"""

from pathlib import Path

import yaml

from ledgermatch.reconcile.platforms import (
    DEFAULT_PLATFORMS,
    Platform,
    platforms_from_config,
)
from ledgermatch.reconcile.suggestions import SuggestionSettings


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._platforms: list[dict] | None = None
        self._matching: dict | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def platforms_raw(self) -> list[dict]:
        """Platform entries in precedence order. Missing file: empty list."""
        if self._platforms is None:
            if not (self.config_dir / "platforms.yaml").exists():
                self._platforms = []
            else:
                data = self._load("platforms.yaml")
                self._platforms = data.get("platforms", []) if isinstance(data, dict) else data
        return self._platforms

    @property
    def platforms(self) -> tuple[Platform, ...]:
        """Configured platforms, or the built-in amazon/paypal pair."""
        if not self.platforms_raw:
            return DEFAULT_PLATFORMS
        return platforms_from_config(self.platforms_raw)

    @property
    def matching(self) -> dict:
        if self._matching is None:
            if not (self.config_dir / "matching.yaml").exists():
                self._matching = {}
            else:
                self._matching = self._load("matching.yaml")
        return self._matching

    @property
    def suggestion_settings(self) -> SuggestionSettings:
        section = self.matching.get("suggestions", {}) or {}
        defaults = SuggestionSettings()
        return SuggestionSettings(
            window_days=float(section.get("window_days", defaults.window_days)),
            amount_tolerance=float(section.get("amount_tolerance", defaults.amount_tolerance)),
            high_confidence_days=float(
                section.get("high_confidence_days", defaults.high_confidence_days)
            ),
        )
