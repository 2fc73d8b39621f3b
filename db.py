"""
Database operations module.
Handles Supabase client initialization, logging setup, and resilient execution
of PostgREST requests (timeouts, error classification, retries).
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Iterator, List, Optional, Protocol, Sequence, TypeVar

import httpx
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client
from tenacity import (
    AsyncRetrying,
    Retrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from constants import UNIQUE_VIOLATION_CODE
from services.errors import (
    TRANSIENT_STORE_ERRORS,
    ConstraintViolation,
    StoreError,
    StoreTimeout,
    StoreUnavailable,
)

# Use a dedicated DB logger
logger = logging.getLogger("st_db")

T = TypeVar("T")

# --- Resilience defaults (overridable per call) ---
STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT_SECONDS", "30"))
STORE_MAX_ATTEMPTS = int(os.getenv("STORE_MAX_ATTEMPTS", "3"))
STORE_RETRY_BACKOFF = float(os.getenv("STORE_RETRY_BACKOFF", "1.0"))
STORE_RETRY_MAX_WAIT = float(os.getenv("STORE_RETRY_MAX_WAIT", "10"))


# ==============================================================
# 🧩 Protocol-based Dependency Injection
# ==============================================================


class SupabaseLike(Protocol):
    """Protocol to allow fake/mocked Supabase clients in tests."""

    def table(self, name: str) -> Any: ...


# Global Supabase client, only used as the default for entrypoints
supabase_client: Optional[SupabaseLike] = None


def set_supabase_client(client: SupabaseLike) -> None:
    """Dependency injection hook for tests."""
    global supabase_client
    supabase_client = client
    logger.info("[DB] Supabase client overridden")


def setup_logging(level: int = logging.INFO):
    """Configure logging for the application.

    This function should be called at application startup.
    It configures the logging format and level.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10),
    reraise=True,
)
def init_supabase() -> Optional[Client]:
    """Initialize Supabase client with retry logic and proper error handling.

    Returns:
        Optional[Client]: Supabase client if initialization succeeds, None otherwise

    Note:
        - Maintenance jobs need the service-role key (RLS blocks deletes for anon)
        - Returns None instead of raising when the environment is not configured
    """
    global supabase_client

    # Return existing client if already initialized
    if supabase_client is not None:
        return supabase_client

    url: str = os.environ.get("NEXT_PUBLIC_SUPABASE_URL", "")
    key: str = os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get(
        "NEXT_PUBLIC_SUPABASE_ANON_KEY", ""
    )
    if not url or not key:
        logger.warning("Missing Supabase environment variables - running without Supabase")
        return None

    try:
        # Bounds every sync PostgREST request
        options = ClientOptions(postgrest_client_timeout=STORE_TIMEOUT)
        client = create_client(url, key, options=options)

        supabase_client = client
        logger.info("Supabase client initialized successfully")
        return client

    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        return None


# ==============================================================
# Error classification
# ==============================================================


def classify_store_error(exc: BaseException) -> BaseException:
    """Map a raw client exception onto the store error taxonomy.

    Exceptions that are not store related (programming errors) are returned
    unchanged so they propagate as-is.
    """
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return StoreTimeout(str(exc) or type(exc).__name__)
    if isinstance(exc, APIError):
        if str(exc.code) == UNIQUE_VIOLATION_CODE:
            return ConstraintViolation(exc.message or str(exc))
        return StoreError(f"[{exc.code}] {exc.message}")
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return StoreUnavailable(str(exc) or type(exc).__name__)
    return exc


def _run_once(query_fn: Callable[[], T]) -> T:
    try:
        return query_fn()
    except Exception as e:
        classified = classify_store_error(e)
        if classified is e:
            raise
        raise classified from e


def _retry_kwargs(attempts: Optional[int]) -> dict:
    return dict(
        stop=stop_after_attempt(attempts or STORE_MAX_ATTEMPTS),
        wait=wait_exponential(
            multiplier=STORE_RETRY_BACKOFF, min=0, max=STORE_RETRY_MAX_WAIT
        ),
        retry=retry_if_exception_type(TRANSIENT_STORE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def execute(query_fn: Callable[[], T], attempts: Optional[int] = None) -> T:
    """Run one PostgREST request, retrying transient failures.

    Args:
        query_fn: Zero-argument callable that builds and executes the request
            (e.g. ``lambda: client.table(t).select("*").execute()``).
        attempts: Maximum attempts; defaults to STORE_MAX_ATTEMPTS.

    Returns:
        Whatever ``query_fn`` returns (usually an APIResponse).

    Raises:
        StoreUnavailable / StoreTimeout: after the final attempt.
        ConstraintViolation, StoreError: immediately, never retried.
    """
    for attempt in Retrying(**_retry_kwargs(attempts)):
        with attempt:
            return _run_once(query_fn)


async def execute_async(
    query_fn: Callable[[], T],
    timeout: Optional[float] = None,
    attempts: Optional[int] = None,
) -> T:
    """Async variant of execute(): runs the blocking request in a thread and
    bounds each attempt with ``asyncio.wait_for``."""
    limit = timeout if timeout is not None else STORE_TIMEOUT

    async for attempt in AsyncRetrying(**_retry_kwargs(attempts)):
        with attempt:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(_run_once, query_fn), timeout=limit
                )
            except asyncio.TimeoutError as e:
                raise StoreTimeout(f"store call exceeded {limit}s") from e


# --- General helpers ---
def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def quote_filter_value(value: Any) -> str:
    """Double-quote a value for a PostgREST logic filter (``or_``/``and(...)``).

    Commas, dots and parentheses inside the quotes stay literal.
    """
    text = str(value)
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
