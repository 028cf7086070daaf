import asyncio
import logging
import os
from datetime import datetime
from typing import Optional, Dict, Any
from urllib.parse import urljoin

import httpx

logger = logging.getLogger(__name__)

DEFAULT_DALIBO_URL = "https://explain.dalibo.com"


def dalibo_base_url() -> str:
    return os.environ.get("MARKDOWN_RUN_DALIBO_URL", DEFAULT_DALIBO_URL).rstrip("/")


async def http_request(method: str, url: str, *, config: Optional[Dict] = None,
                       data: Optional[Dict[str, str]] = None) -> httpx.Response:
    """
    Core HTTP helper.

    config keys:
      - timeout (seconds, default 10)
      - retries (extra attempts on transport errors, default 2)
      - backoff (base delay in seconds, doubled per attempt, default 0.2)
      - headers (dict)
      - follow-redirects (default False; callers read Location themselves)
    Returns the response for any status code; raises after the last failed attempt.
    """
    cfg = dict(config or {})
    timeout = float(cfg.pop('timeout', 10.0))
    retries = int(cfg.pop('retries', 2))
    backoff = float(cfg.pop('backoff', 0.2))
    headers = dict(cfg.pop('headers', {}))
    follow = bool(cfg.pop('follow-redirects', False))

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=follow) as client:
        last_exc = None
        for attempt in range(retries + 1):
            try:
                return await client.request(method.upper(), url, headers=headers, data=data)
            except httpx.TransportError as e:
                last_exc = e
                if attempt < retries:
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise last_exc


async def submit_plan(plan_json: str, *, query: Optional[str] = None, title: Optional[str] = None,
                      base_url: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Submit an EXPLAIN JSON plan to the visualization service.

    Returns the URL of the stored plan, or None on any failure. Never raises.
    """
    base = (base_url or dalibo_base_url()).rstrip("/")
    form = {
        "title": title or f"markdown-run {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "plan": plan_json,
    }
    if query:
        form["query"] = query
    try:
        resp = await http_request("POST", f"{base}/new", config=config, data=form)
    except Exception as e:
        logger.warning(f"Failed to submit plan to {base}: {e}")
        return None

    if 300 <= resp.status_code < 400:
        location = resp.headers.get("location")
        if not location:
            logger.warning("Plan submission redirect carried no Location header")
            return None
        return urljoin(base + "/", location)
    logger.warning(f"Plan submission failed: HTTP {resp.status_code}")
    return None
