import asyncio
import os
from typing import Optional, Dict, Any
import httpx


def http_settings(config: Optional[Dict] = None) -> Dict[str, Any]:
    """
    Effective HTTP settings: explicit config wins, then MODLOAD_HTTP_* env vars,
    then defaults (timeout 5s, 2 retries, 0.2s backoff).
    """
    cfg = dict(config or {})
    env = os.environ
    return {
        "timeout": float(cfg.pop("timeout", env.get("MODLOAD_HTTP_TIMEOUT", 5.0))),
        "retries": int(cfg.pop("retries", env.get("MODLOAD_HTTP_RETRIES", 2))),
        "backoff": float(cfg.pop("backoff", 0.2)),
        "headers": dict(cfg.pop("headers", {})),
    }


def _decode(resp) -> str:
    content = resp.content
    if isinstance(content, str):
        return content
    from modload.modload_serialize import encoding_from_content_type
    enc = encoding_from_content_type(resp.headers.get("Content-Type")) or "utf-8"
    try:
        return content.decode(enc)
    except (LookupError, UnicodeDecodeError):
        return content.decode("utf-8", errors="replace")


async def http_request(method: str, url: str, *, config: Optional[Dict] = None) -> Any:
    """
    GET/HEAD helper with retries and exponential backoff.

    Returns the httpx response on 2xx; raises RuntimeError on any other status
    once retries are exhausted.
    """
    settings = http_settings(config)
    retries = settings["retries"]
    backoff = settings["backoff"]

    async with httpx.AsyncClient(timeout=settings["timeout"], follow_redirects=True) as client:
        last_exc = None
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method.upper(), url, headers=settings["headers"])
                if 200 <= resp.status_code < 300:
                    return resp
                preview = (resp.text or "")[:200]
                raise RuntimeError(f"HTTP {resp.status_code} for {url}: {preview}")
            except Exception as e:
                last_exc = e
                if attempt < retries:
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise last_exc


async def fetch_source(url: str, config: Optional[Dict] = None) -> str:
    """Fetch module source text from `url`."""
    resp = await http_request("GET", url, config=config)
    return _decode(resp)
