"""
Shared HTTP client for LLM endpoint and job-service calls.

One pooled AsyncClient for all completion, health and remote-job requests.
Timeouts are passed per request since completions (minutes) and health
probes (seconds) need very different bounds.
"""

import logging

import httpx

logger = logging.getLogger(__name__)

# Module-level singleton client
_client: httpx.AsyncClient | None = None


def get_llm_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client for LLM calls."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(120.0, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        logger.debug("Created new LLM HTTP client with connection pooling")
    return _client


async def close_llm_http_client() -> None:
    """
    Close the shared HTTP client.

    Call on app shutdown for graceful termination.
    """
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
        _client = None
        logger.debug("Closed LLM HTTP client")
