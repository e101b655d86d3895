import json
import logging
import tomllib
from pathlib import Path
from typing import List, Optional, Tuple

from trmnl_cli.utils import (
    Config,
    HistorySettings,
    Plugin,
    TIER_LIMITS,
    DEFAULT_TIER,
    expand_path,
)

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".trmnl"
CONFIG_PATH = CONFIG_DIR / "config.json"
LEGACY_CONFIG_NAME = "config.toml"


class ConfigStore:
    """Whole-record JSON store for plugins, default plugin, tier and history settings.

    Every accessor loads the file afresh and every mutation rewrites it.
    There is no locking: two invocations mutating the same file race and the
    last writer wins.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else CONFIG_PATH
        self.legacy_path = self.path.with_name(LEGACY_CONFIG_NAME)

    # ========== Load / Save ==========
    def load(self) -> Config:
        migrated = self._migrate_legacy()
        if migrated is not None:
            self.save(migrated)
            return migrated

        if not self.path.exists():
            return Config()

        try:
            with self.path.open("r", encoding="utf-8") as f:
                return Config.from_dict(json.load(f))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable config %s: %s", self.path, e)
            return Config()

    def save(self, cfg: Config) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(cfg.to_dict(), f, indent=2)
            f.write("\n")

    def _migrate_legacy(self) -> Optional[Config]:
        """One-time import of the old ``[webhook]`` TOML config."""
        if not self.legacy_path.exists():
            return None

        try:
            with self.legacy_path.open("rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Skipping legacy config %s: %s", self.legacy_path, e)
            return None

        webhook = data.get("webhook") or {}
        url = webhook.get("url") if isinstance(webhook, dict) else None
        if not isinstance(webhook, dict) or (url is not None and not isinstance(url, str)):
            logger.warning("Skipping legacy config %s: unexpected [webhook] table", self.legacy_path)
            return None

        cfg = Config()
        if url:
            cfg.plugins["default"] = Plugin(url=url)
            cfg.default_plugin = "default"
        tier = webhook.get("tier")
        if isinstance(tier, str) and tier in TIER_LIMITS:
            cfg.tier = tier

        self.legacy_path.unlink()
        logger.info("Migrated legacy %s to %s", self.legacy_path, self.path)
        return cfg

    # ========== Plugins ==========
    def get_plugin(self, name: Optional[str] = None) -> Optional[Tuple[str, Plugin]]:
        """Named plugin, else the default, else the only plugin; None when nothing matches."""
        cfg = self.load()

        if name:
            plugin = cfg.plugins.get(name)
            return (name, plugin) if plugin else None

        if cfg.default_plugin and cfg.default_plugin in cfg.plugins:
            return cfg.default_plugin, cfg.plugins[cfg.default_plugin]

        if len(cfg.plugins) == 1:
            only = next(iter(cfg.plugins))
            return only, cfg.plugins[only]

        return None

    def set_plugin(self, name: str, url: str, description: Optional[str] = None) -> None:
        cfg = self.load()
        cfg.plugins[name] = Plugin(url=url, description=description)
        if not cfg.default_plugin or cfg.default_plugin not in cfg.plugins or len(cfg.plugins) == 1:
            cfg.default_plugin = name
        self.save(cfg)

    def update_plugin(self, name: str, url: Optional[str] = None, description: Optional[str] = None) -> bool:
        cfg = self.load()
        existing = cfg.plugins.get(name)
        if existing is None:
            return False
        cfg.plugins[name] = Plugin(
            url=url or existing.url,
            description=description if description is not None else existing.description,
        )
        self.save(cfg)
        return True

    def remove_plugin(self, name: str) -> bool:
        cfg = self.load()
        if name not in cfg.plugins:
            return False

        del cfg.plugins[name]
        if cfg.default_plugin == name:
            cfg.default_plugin = next(iter(cfg.plugins), None)

        self.save(cfg)
        return True

    def set_default_plugin(self, name: str) -> bool:
        cfg = self.load()
        if name not in cfg.plugins:
            return False
        cfg.default_plugin = name
        self.save(cfg)
        return True

    def list_plugins(self) -> List[Tuple[str, Plugin, bool]]:
        cfg = self.load()
        return [(name, plugin, name == cfg.default_plugin) for name, plugin in cfg.plugins.items()]

    # ========== Tier ==========
    def get_tier(self) -> str:
        return self.load().tier or DEFAULT_TIER

    def set_tier(self, tier: str) -> None:
        if tier not in TIER_LIMITS:
            raise ValueError(f"Unknown tier: {tier}")
        cfg = self.load()
        cfg.tier = tier
        self.save(cfg)

    # ========== History ==========
    def history_settings(self) -> HistorySettings:
        settings = self.load().history
        return HistorySettings(path=str(expand_path(settings.path)), max_size_mb=settings.max_size_mb)

    def set_history(self, path: Optional[str] = None, max_size_mb: Optional[float] = None) -> HistorySettings:
        cfg = self.load()
        if path:
            cfg.history.path = path
        if max_size_mb is not None:
            cfg.history.max_size_mb = max_size_mb
        self.save(cfg)
        return cfg.history
