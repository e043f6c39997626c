"""Shared HTTP plumbing for provider clients: per-attempt timeouts and retry with backoff."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from ..exceptions import ApiKeyError, ProviderError, ProviderTimeoutError, RateLimitError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds
MAX_RETRY_AFTER = 60.0  # seconds
AUTH_FAILURE_STATUSES = (401, 403)


def is_retryable_status(status_code: int) -> bool:
    """Server errors and rate limits are retried; other client errors are not."""
    return status_code == 429 or status_code >= 500


def parse_retry_after(response: httpx.Response) -> float | None:
    """Seconds from a numeric Retry-After header, or None."""
    value = response.headers.get("retry-after", "").strip()
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def backoff_delay(attempt: int, status_code: int | None, initial_delay: float, retry_after: float | None = None) -> float:
    # Rate limits wait one step longer than server/network errors.
    exponent = attempt + 1 if status_code == 429 else attempt
    delay = initial_delay * (2**exponent)
    if retry_after is not None:
        delay = max(delay, min(retry_after, MAX_RETRY_AFTER))
    return delay


def parse_error_message(response: httpx.Response) -> str:
    """Best-effort human message from an error response body."""
    try:
        text = response.text
    except httpx.ResponseNotRead:
        return f"HTTP {response.status_code}"
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return str(data.get("message") or error or text)
    return text


def raise_for_provider_status(response: httpx.Response, service: str, key_name: str) -> None:
    """Translate a failed response into the provider error taxonomy."""
    if response.is_success:
        return
    message = parse_error_message(response)
    if response.status_code in AUTH_FAILURE_STATUSES:
        raise ApiKeyError(key_name, f"{service} API authentication failed. Please check your {key_name} is valid.")
    if response.status_code == 429:
        raise RateLimitError(service, parse_retry_after(response))
    raise ProviderError(f"{service} API error: {response.status_code} - {message}", service=service, status_code=response.status_code)


async def send_with_retry(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    service: str,
    timeout: float,
    retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_RETRY_DELAY,
    stream: bool = False,
) -> httpx.Response:
    """Send a request, retrying 5xx/429 responses and network errors with exponential backoff.

    Client errors other than 429 are returned immediately. When retries are
    exhausted on a retryable status, the last response is returned so the
    caller can turn it into a typed error.

    Args:
        client: Shared async HTTP client
        request: Prepared request (re-sent on every attempt)
        service: Provider name for error messages
        timeout: Per-attempt timeout in seconds
        retries: Total number of attempts
        initial_delay: Base backoff delay in seconds
        stream: Return an unread streaming response (caller must close it)

    Raises:
        ProviderTimeoutError: The final attempt timed out
        ProviderError: The final attempt failed with a network error
    """
    last_error: Exception | None = None
    last_response: httpx.Response | None = None
    request.extensions["timeout"] = httpx.Timeout(timeout).as_dict()

    for attempt in range(retries):
        retry_after: float | None = None
        try:
            response = await client.send(request, stream=stream)
        except httpx.TimeoutException as e:
            last_error = ProviderTimeoutError(f"{service} request timed out after {timeout:g}s", service=service)
            last_error.__cause__ = e
            logger.warning(f"{service} request timed out (attempt {attempt + 1}/{retries})")
            status_code = None
        except httpx.TransportError as e:
            last_error = ProviderError(f"{service} request failed: {e}", service=service)
            last_error.__cause__ = e
            logger.warning(f"{service} network error (attempt {attempt + 1}/{retries}): {e}")
            status_code = None
        else:
            if response.is_success or not is_retryable_status(response.status_code):
                return response
            status_code = response.status_code
            retry_after = parse_retry_after(response)
            if last_response is not None:
                await last_response.aclose()
            last_response = response
            logger.warning(f"{service} returned {status_code} (attempt {attempt + 1}/{retries})")

        if attempt < retries - 1:
            await asyncio.sleep(backoff_delay(attempt, status_code, initial_delay, retry_after))

    if last_response is not None:
        if stream:
            await last_response.aread()
        return last_response
    raise last_error or ProviderError(f"{service}: max retries exceeded", service=service)


@asynccontextmanager
async def streaming_response(
    client: httpx.AsyncClient,
    request: httpx.Request,
    **kwargs: Any,
) -> AsyncIterator[httpx.Response]:
    """Context manager around send_with_retry(stream=True) that always closes the response."""
    response = await send_with_retry(client, request, stream=True, **kwargs)
    try:
        yield response
    finally:
        await response.aclose()
