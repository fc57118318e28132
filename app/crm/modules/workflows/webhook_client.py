from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any


class WebhookError(RuntimeError):
    pass


class WebhookRateLimited(WebhookError):
    pass


@dataclass(frozen=True)
class WebhookClient:
    timeout_seconds: int = 10
    user_agent: str = "boothcrm-workflows/1.0"

    def post_json(
        self,
        url: str,
        body: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        retries: int = 2,
        backoff_seconds: float = 1.0,
    ) -> dict[str, Any]:
        """POST a JSON body; returns {status, body}. Retries 429 and 5xx with linear backoff."""
        data = json.dumps(body, default=str).encode("utf-8")
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method="POST")
                req.add_header("Content-Type", "application/json")
                req.add_header("User-Agent", self.user_agent)
                for k, v in (headers or {}).items():
                    req.add_header(k, v)
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read().decode("utf-8", errors="replace")
                    return {"status": resp.status, "body": raw[:2000]}
            except urllib.error.HTTPError as e:
                if e.code == 429 or e.code >= 500:
                    last_err = WebhookRateLimited("Rate limited (429)") if e.code == 429 else WebhookError(f"HTTP {e.code}")
                    e.close()
                    if attempt < retries:
                        time.sleep(min(backoff_seconds * (attempt + 1), 10))
                    continue
                try:
                    text = e.read().decode("utf-8", errors="ignore")
                except OSError:
                    text = ""
                raise WebhookError(f"HTTP {e.code} from webhook: {text[:300]}") from e
            except (urllib.error.URLError, TimeoutError, OSError) as e:
                last_err = e
                if attempt < retries:
                    time.sleep(min(backoff_seconds * (attempt + 1), 5))
                continue
        raise WebhookError(f"Webhook request failed after retries: {last_err}")
