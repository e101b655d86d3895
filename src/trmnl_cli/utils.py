from typing import Any, Dict, List, Optional
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path

# ========== Tiers ==========
TIER_LIMITS: Dict[str, int] = {
    "free": 2048,   # 2 KB
    "plus": 5120,   # 5 KB
}
DEFAULT_TIER = "free"

DEFAULT_HISTORY_PATH = "~/.trmnl/history.jsonl"
DEFAULT_HISTORY_MAX_SIZE_MB = 100


class ConfigError(Exception):
    """No webhook target could be resolved from the arguments, env or config."""


def expand_path(path: str) -> Path:
    return Path(path).expanduser()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as local time."""
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.astimezone()
    return ts


# ========== Config & Models ==========
@dataclass
class Plugin:
    url: str
    description: Optional[str] = None


@dataclass
class HistorySettings:
    path: str = DEFAULT_HISTORY_PATH
    max_size_mb: float = DEFAULT_HISTORY_MAX_SIZE_MB


@dataclass
class Config:
    plugins: Dict[str, Plugin] = field(default_factory=dict)
    default_plugin: Optional[str] = None
    tier: str = DEFAULT_TIER
    history: HistorySettings = field(default_factory=HistorySettings)

    def to_dict(self) -> Dict[str, Any]:
        plugins = {}
        for name, plugin in self.plugins.items():
            item = {"url": plugin.url}
            if plugin.description is not None:
                item["description"] = plugin.description
            plugins[name] = item
        data: Dict[str, Any] = {"plugins": plugins}
        if self.default_plugin is not None:
            data["defaultPlugin"] = self.default_plugin
        data["tier"] = self.tier
        data["history"] = {"path": self.history.path, "maxSizeMb": self.history.max_size_mb}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a config from its JSON form; raises TypeError/ValueError on bad shapes."""
        if not isinstance(data, dict):
            raise TypeError("config root must be an object")

        plugins: Dict[str, Plugin] = {}
        for name, raw in (data.get("plugins") or {}).items():
            if not isinstance(raw, dict) or not isinstance(raw.get("url"), str):
                raise ValueError(f"plugin {name!r} has no url")
            plugins[name] = Plugin(url=raw["url"], description=raw.get("description"))

        tier = data.get("tier") or DEFAULT_TIER
        if tier not in TIER_LIMITS:
            tier = DEFAULT_TIER

        history = HistorySettings()
        raw_history = data.get("history") or {}
        if not isinstance(raw_history, dict):
            raise ValueError("history must be an object")
        path = raw_history.get("path") or DEFAULT_HISTORY_PATH
        if not isinstance(path, str):
            raise ValueError("history.path must be a string")
        max_size_mb = raw_history.get("maxSizeMb") or DEFAULT_HISTORY_MAX_SIZE_MB
        if isinstance(max_size_mb, bool) or not isinstance(max_size_mb, (int, float)) or max_size_mb <= 0:
            raise ValueError("history.maxSizeMb must be a positive number")
        history.path = path
        history.max_size_mb = max_size_mb

        default_plugin = data.get("defaultPlugin")
        if default_plugin is not None and not isinstance(default_plugin, str):
            raise ValueError("defaultPlugin must be a string")

        return cls(
            plugins=plugins,
            default_plugin=default_plugin,
            tier=tier,
            history=history,
        )


@dataclass
class ValidationResult:
    valid: bool
    size_bytes: int
    tier: str
    limit_bytes: int
    remaining_bytes: int
    percent_used: float
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    size_bytes: int
    tier: str
    payload: Dict[str, Any]
    success: bool
    duration_ms: int
    plugin: Optional[str] = None
    status_code: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None

    @property
    def sent_at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        if not isinstance(data, dict):
            raise TypeError("history record must be an object")
        known = {f.name for f in fields(cls)}
        entry = cls(**{k: v for k, v in data.items() if k in known})
        # reject records whose timestamp can't be ordered
        parse_timestamp(entry.timestamp)
        for name in ("size_bytes", "duration_ms"):
            value = getattr(entry, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{name} must be an integer")
        if not isinstance(entry.success, bool):
            raise TypeError("success must be a boolean")
        if not isinstance(entry.payload, dict):
            raise TypeError("payload must be an object")
        return entry


@dataclass
class SubmitResult:
    ok: bool
    status_code: Optional[int]
    text: str
    error: Optional[str] = None


@dataclass
class SendResult:
    success: bool
    duration_ms: int
    validation: ValidationResult
    plugin: Optional[str] = None
    url: Optional[str] = None
    status_code: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
