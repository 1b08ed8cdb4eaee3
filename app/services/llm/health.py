"""
LLM reachability checks.

Probes, in the configured order:
- service: the remote job service (``/ready`` with infra checks, then ``/health``)
- primary: the configured OpenAI-compatible endpoint
- local: the local fallback endpoint (skipped when it is the primary)

An OpenAI-style endpoint counts as alive when ``GET /models`` succeeds, when
Ollama's native ``GET /api/tags`` succeeds, or when a minimal chat completion
answers with any non-5xx status (some servers expose neither listing route).

Results are cached briefly so UI polling does not hammer the endpoints.
"""

import logging
from dataclasses import dataclass

import httpx
from cachetools import TTLCache  # type: ignore[import-untyped]

from app.config import Settings, settings
from app.services.llm.http_client import get_llm_http_client

logger = logging.getLogger(__name__)

_health_cache: TTLCache[tuple, "LlmHealthStatus"] = TTLCache(
    maxsize=8, ttl=settings.llm_health_cache_seconds
)


@dataclass
class LlmHealthStatus:
    """Outcome of a health check."""

    ok: bool
    mode: str  # "service" | "remote" | "local" | "none"
    model: str | None = None
    checked_url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "mode": self.mode,
            "model": self.model,
            "checkedUrl": self.checked_url,
            "error": self.error,
        }


async def probe_job_service(
    http: httpx.AsyncClient,
    base_url: str,
    secret: str,
    timeout: float,
) -> str | None:
    """Probe the remote job service. Returns None when healthy, else an error."""
    base_url = base_url.rstrip("/")
    headers = {"X-API-Secret": secret}

    try:
        response = await http.get(f"{base_url}/ready", headers=headers, timeout=timeout)
        if response.is_success:
            checks = response.json().get("checks") or {}
            failing = [name for name in ("redis", "postgres") if checks.get(name) is False]
            if not failing:
                return None
            return f"job service dependencies down: {', '.join(failing)}"
    except (httpx.TransportError, ValueError) as e:
        logger.debug(f"[health] /ready probe failed for {base_url}: {e!r}")

    try:
        response = await http.get(f"{base_url}/health", headers=headers, timeout=timeout)
    except httpx.TransportError as e:
        return f"unreachable ({type(e).__name__})"
    if response.is_success:
        return None
    return f"health returned HTTP {response.status_code}"


async def probe_openai_endpoint(
    http: httpx.AsyncClient,
    base_url: str,
    model: str,
    api_key: str,
    timeout: float,
) -> str | None:
    """Probe an OpenAI-compatible endpoint. Returns None when alive, else an error."""
    base_url = base_url.rstrip("/")
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    errors: list[str] = []

    try:
        response = await http.get(f"{base_url}/models", headers=headers, timeout=timeout)
        if response.is_success:
            return None
        errors.append(f"/models HTTP {response.status_code}")
    except httpx.TransportError as e:
        # Nothing listening; the remaining probes would fail the same way
        return f"unreachable ({type(e).__name__})"

    ollama_root = base_url.removesuffix("/v1")
    try:
        response = await http.get(f"{ollama_root}/api/tags", timeout=timeout)
        if response.is_success:
            return None
        errors.append(f"/api/tags HTTP {response.status_code}")
    except httpx.TransportError as e:
        errors.append(f"/api/tags {type(e).__name__}")

    try:
        response = await http.post(
            f"{base_url}/chat/completions",
            json={
                "model": model,
                "messages": [{"role": "user", "content": "ping"}],
                "max_tokens": 1,
                "stream": False,
            },
            headers=headers,
            timeout=timeout,
        )
        if response.status_code < 500:
            return None
        errors.append(f"/chat/completions HTTP {response.status_code}")
    except httpx.TransportError as e:
        errors.append(f"/chat/completions {type(e).__name__}")

    return ", ".join(errors)


async def check_llm_health(
    config: Settings = settings,
    http_client: httpx.AsyncClient | None = None,
    use_cache: bool = True,
) -> LlmHealthStatus:
    """
    Check which LLM path is usable, following ``llm_health_probe_order``.

    Returns the first healthy target. When none is healthy the error lists
    every endpoint that was tried.
    """
    cache_key = (
        tuple(config.llm_health_probe_order),
        config.llm_service_url,
        config.llm_base_url,
        config.local_llm_base_url,
    )
    if use_cache and cache_key in _health_cache:
        cached: LlmHealthStatus = _health_cache[cache_key]
        return cached

    http = http_client or get_llm_http_client()
    timeout = config.llm_health_timeout_seconds
    checked: list[str] = []
    failures: list[str] = []
    status: LlmHealthStatus | None = None

    for target in config.llm_health_probe_order:
        if target == "service":
            if not config.llm_service_enabled:
                continue
            url = config.llm_service_url.rstrip("/")
            error = await probe_job_service(http, url, config.llm_service_secret, timeout)
            if error is None:
                status = LlmHealthStatus(ok=True, mode="service", model=None, checked_url=url)
                break
        elif target == "primary":
            if not config.llm_base_url:
                continue
            url = config.llm_base_url.rstrip("/")
            model = config.llm_model or config.local_llm_model
            error = await probe_openai_endpoint(
                http, url, model, config.llm_api_key or config.local_llm_api_key, timeout
            )
            if error is None:
                mode = "remote" if config.remote_llm_configured else "local"
                status = LlmHealthStatus(ok=True, mode=mode, model=model, checked_url=url)
                break
        elif target == "local":
            url = config.local_llm_base_url.rstrip("/")
            if url in checked:
                continue
            error = await probe_openai_endpoint(
                http, url, config.local_llm_model, config.local_llm_api_key, timeout
            )
            if error is None:
                status = LlmHealthStatus(
                    ok=True, mode="local", model=config.local_llm_model, checked_url=url
                )
                break
        else:
            logger.warning(f"[health] Unknown probe target '{target}' ignored")
            continue

        checked.append(url)
        failures.append(f"{target} {url}: {error}")

    if status is None:
        if failures:
            error_text = "No LLM endpoint reachable. Tried " + "; ".join(failures)
        else:
            error_text = "No LLM endpoint configured"
        logger.warning(f"[health] {error_text}")
        status = LlmHealthStatus(
            ok=False,
            mode="none",
            model=None,
            checked_url=checked[-1] if checked else None,
            error=error_text,
        )

    _health_cache[cache_key] = status
    return status


def clear_health_cache() -> None:
    """Clear cached health results. Useful for testing or after config changes."""
    _health_cache.clear()
