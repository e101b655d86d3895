"""Webhook dispatch: resolve target, validate, POST, record."""
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from trmnl_cli.client import WebhookClient
from trmnl_cli.config_store import ConfigStore
from trmnl_cli.history import HistoryLog
from trmnl_cli.utils import ConfigError, HistoryEntry, SendResult
from trmnl_cli.validator import serialize_payload, validate_payload

logger = logging.getLogger(__name__)

WEBHOOK_ENV = "TRMNL_WEBHOOK"
ENV_PLUGIN_NAME = f"${WEBHOOK_ENV}"
DIRECT_PLUGIN_NAME = "(direct)"


def _elapsed_ms(start: float) -> int:
    return round((time.monotonic() - start) * 1000)


class WebhookDispatcher:
    def __init__(self, store: ConfigStore, history: Optional[HistoryLog] = None,
                 client: Optional[WebhookClient] = None):
        self.store = store
        self.history = history
        self.client = client or WebhookClient()

    def resolve_target(self, plugin_name: Optional[str] = None,
                       webhook_url: Optional[str] = None) -> Tuple[str, str]:
        """Return ``(plugin label, url)``; raises ConfigError when nothing resolves.

        Precedence: explicit url, $TRMNL_WEBHOOK, named plugin, default plugin,
        the only plugin when no default is set.
        """
        if webhook_url:
            return DIRECT_PLUGIN_NAME, webhook_url

        env_url = os.environ.get(WEBHOOK_ENV)
        if env_url:
            return ENV_PLUGIN_NAME, env_url

        cfg = self.store.load()

        if plugin_name:
            plugin = cfg.plugins.get(plugin_name)
            if plugin is None:
                raise ConfigError(f"Plugin not found: {plugin_name}")
            return plugin_name, plugin.url

        if cfg.default_plugin:
            plugin = cfg.plugins.get(cfg.default_plugin)
            if plugin is None:
                raise ConfigError(
                    f"Default plugin not found: {cfg.default_plugin}. "
                    "Run: trmnl plugin default <name>"
                )
            return cfg.default_plugin, plugin.url

        if len(cfg.plugins) == 1:
            only = next(iter(cfg.plugins))
            return only, cfg.plugins[only].url

        if not cfg.plugins:
            raise ConfigError(
                f"No webhook URL configured. Set {WEBHOOK_ENV} env var or run: trmnl plugin add <name> <url>"
            )
        raise ConfigError(
            f"{len(cfg.plugins)} plugins configured but none is the default. "
            "Use --plugin <name> or run: trmnl plugin default <name>"
        )

    def send(self, payload: Dict[str, Any], plugin_name: Optional[str] = None,
             webhook_url: Optional[str] = None, tier: Optional[str] = None,
             skip_validation: bool = False, skip_log: bool = False) -> SendResult:
        start = time.monotonic()
        tier = tier or self.store.get_tier()
        validation = validate_payload(payload, tier)

        try:
            label, url = self.resolve_target(plugin_name, webhook_url)
        except ConfigError as e:
            logger.debug("Target resolution failed: %s", e)
            result = SendResult(
                success=False, duration_ms=_elapsed_ms(start), validation=validation,
                plugin=plugin_name, error=str(e),
            )
            return self._record(payload, result, skip_log)

        if not skip_validation and not validation.valid:
            result = SendResult(
                success=False, duration_ms=_elapsed_ms(start), validation=validation,
                plugin=label, url=url, error="; ".join(validation.errors),
            )
            return self._record(payload, result, skip_log)

        logger.info("Sending %d bytes to %s (%s)", validation.size_bytes, label, url)
        submitted = self.client.post_payload(url, serialize_payload(payload))
        duration_ms = _elapsed_ms(start)

        result = SendResult(
            success=submitted.ok, duration_ms=duration_ms, validation=validation,
            plugin=label, url=url,
        )
        if submitted.status_code is None:
            result.error = submitted.error or "Request failed"
        else:
            result.status_code = submitted.status_code
            result.response = submitted.text
            if not submitted.ok:
                result.error = f"HTTP {submitted.status_code}: {submitted.text}"

        return self._record(payload, result, skip_log)

    def _record(self, payload: Dict[str, Any], result: SendResult, skip_log: bool) -> SendResult:
        if skip_log or self.history is None:
            return result
        self.history.append(make_history_entry(payload, result))
        return result


def make_history_entry(payload: Dict[str, Any], result: SendResult) -> HistoryEntry:
    return HistoryEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        plugin=result.plugin,
        size_bytes=result.validation.size_bytes,
        tier=result.validation.tier,
        payload=payload,
        success=result.success,
        status_code=result.status_code,
        response=result.response,
        error=result.error,
        duration_ms=result.duration_ms,
    )
