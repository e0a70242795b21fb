from __future__ import annotations
import json
import logging
import httpx
from forkify_ingest.config import Config

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/121.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class FetchError(Exception):
    pass


async def _fetch_primary(client: httpx.AsyncClient, url: str, config: Config) -> str:
    relay_url = config.relay_url(config.primary_relay, url)
    try:
        response = await client.get(relay_url, timeout=config.relay_timeout)
    except httpx.TimeoutException:
        raise FetchError(f"Primary relay timed out after {config.relay_timeout:g}s for {url}")
    except httpx.HTTPError as e:
        raise FetchError(f"Primary relay request failed for {url}: {e}") from e

    if response.status_code >= 400:
        raise FetchError(f"Primary relay returned HTTP {response.status_code} for {url}")
    if not response.text.strip():
        raise FetchError(f"Primary relay returned an empty page for {url}")
    return response.text


async def _fetch_fallback(client: httpx.AsyncClient, url: str, config: Config) -> str:
    relay_url = config.relay_url(config.fallback_relay, url)
    try:
        response = await client.get(relay_url, timeout=config.relay_timeout)
    except httpx.HTTPError as e:
        raise FetchError(f"Could not retrieve content from URL {url}: {e}") from e

    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        raise FetchError(f"Could not retrieve content from URL {url}: fallback relay returned no JSON")

    status = payload.get("status") if isinstance(payload, dict) else None
    http_code = status.get("http_code") if isinstance(status, dict) else None
    if isinstance(http_code, int) and http_code >= 400:
        raise FetchError(f"Could not retrieve content from URL {url}: page returned HTTP {http_code}")

    contents = payload.get("contents") if isinstance(payload, dict) else None
    if not contents:
        raise FetchError(f"Could not retrieve content from URL {url}: fallback relay returned no content")
    return contents


async def fetch_page(url: str, config: Config, client: httpx.AsyncClient | None = None) -> str:
    """Fetch a third-party page through the CORS relays.

    The primary relay is tried once; any failure there falls through to the
    fallback relay, whose failure is final.
    """
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(headers=HEADERS, follow_redirects=True)
    try:
        try:
            return await _fetch_primary(client, url, config)
        except FetchError as e:
            logger.warning("%s; trying fallback relay", e)
        return await _fetch_fallback(client, url, config)
    finally:
        if owns_client:
            await client.aclose()
