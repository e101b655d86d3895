import logging
from typing import Optional

import httpx

from trmnl_cli.utils import SubmitResult

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


# ========== HTTP Client ==========
class WebhookClient:
    """Fire-once JSON POST; no retries and the transport's default timeout."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self._transport = transport

    def post_payload(self, url: str, body: str) -> SubmitResult:
        try:
            with httpx.Client(transport=self._transport) as c:
                r = c.post(url, content=body.encode("utf-8"), headers=JSON_HEADERS)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # network layer: DNS, refused connection, timeout, malformed url
            logger.debug("POST %s failed: %r", url, e)
            return SubmitResult(ok=False, status_code=None, text="", error=str(e) or e.__class__.__name__)

        logger.debug("POST %s -> %s", url, r.status_code)
        return SubmitResult(ok=r.is_success, status_code=r.status_code, text=r.text)
