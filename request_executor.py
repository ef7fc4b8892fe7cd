"""
⚙️ Request Executor
===================
Issues one logical API call on behalf of a virtual user.

Per attempt:
- acquire the global gate, then the endpoint gate if the URL is a heavy one
- send the request under a bounded timeout
- classify: success (status 200-399), HTTP_<status>, or a transport code
  (TIMEOUT / ECONNRESET / ECONNREFUSED / UNKNOWN)

Timeouts are retried a bounded number of times with a growing delay, and each
retried timeout is a degrade signal. Failure messages that look like resource
exhaustion are reported to the health monitor as well. Exactly one outcome per
logical call reaches the stats collector.

The executor never raises for transport or HTTP failures. The only exception
it lets out is UnsupportedMethodError, which is a bug in the caller.
"""

import asyncio
import errno
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

import aiohttp

from load_metrics import RequestOutcome
from run_context import RunContext

logger = logging.getLogger(__name__)


SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
BODY_METHODS = ("POST", "PUT", "PATCH")

USER_AGENT = "EcommerceLoadTest/1.0"


class LoadTestError(Exception):
    """Base class for load tester errors."""


class UnsupportedMethodError(LoadTestError, ValueError):
    def __init__(self, method: str):
        super().__init__(f"Unsupported HTTP method: {method!r}")
        self.method = method


class FailureKind:
    TIMEOUT = "TIMEOUT"
    RESET = "ECONNRESET"
    REFUSED = "ECONNREFUSED"
    UNKNOWN = "UNKNOWN"

    @staticmethod
    def http(status: int) -> str:
        return f"HTTP_{status}"


def endpoint_key(url: str) -> str:
    """URL path with the query string stripped."""
    return urlsplit(url).path or "/"


def classify_exception(exc: BaseException) -> str:
    """Map a transport exception to a failure kind."""
    if isinstance(exc, asyncio.TimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return FailureKind.RESET

    os_error = getattr(exc, "os_error", None)
    for err in (exc, os_error):
        if err is None:
            continue
        if isinstance(err, ConnectionRefusedError) or getattr(err, "errno", None) == errno.ECONNREFUSED:
            return FailureKind.REFUSED
        if isinstance(err, ConnectionResetError) or getattr(err, "errno", None) == errno.ECONNRESET:
            return FailureKind.RESET
    return FailureKind.UNKNOWN


# =============================================================================
# RETRY STATE MACHINE
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry budget for timed-out calls."""
    max_retries: int = 2
    base_delay: float = 0.3
    step: float = 0.3

    def delay_for(self, retry_number: int) -> float:
        """Delay before the n-th retry (1-based)."""
        return self.base_delay + retry_number * self.step


class RetryPhase(Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    DONE = "done"


class RetryState:
    """
    Per-call retry state: ATTEMPTING -> (WAITING -> ATTEMPTING)* -> DONE.

    Only timeouts are retryable. The number of retries never exceeds the
    policy's budget.
    """

    def __init__(self, policy: RetryPolicy):
        self.policy = policy
        self.phase = RetryPhase.ATTEMPTING
        self.attempts = 0
        self.retries_used = 0

    @property
    def retries_left(self) -> int:
        return self.policy.max_retries - self.retries_used

    def on_result(self, failure_kind: Optional[str]) -> RetryPhase:
        if self.phase is not RetryPhase.ATTEMPTING:
            raise RuntimeError(f"on_result() called in phase {self.phase.value}")
        self.attempts += 1
        if failure_kind == FailureKind.TIMEOUT and self.retries_left > 0:
            self.phase = RetryPhase.WAITING
        else:
            self.phase = RetryPhase.DONE
        return self.phase

    def next_delay(self) -> float:
        if self.phase is not RetryPhase.WAITING:
            raise RuntimeError(f"next_delay() called in phase {self.phase.value}")
        self.retries_used += 1
        self.phase = RetryPhase.ATTEMPTING
        return self.policy.delay_for(self.retries_used)


@dataclass
class _Attempt:
    status: int
    failure_kind: Optional[str]
    duration_ms: float
    message: Optional[str] = None
    payload: Any = None

    @property
    def success(self) -> bool:
        return self.failure_kind is None


def _decode_body(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return body.decode("utf-8", errors="replace")


# =============================================================================
# EXECUTOR
# =============================================================================

class RequestExecutor:
    """
    Gate-aware, retrying HTTP caller bound to one aiohttp session and one
    run context.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ctx: RunContext,
        request_timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
        verify_ssl: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.ctx = ctx
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.retry_policy = retry_policy or RetryPolicy()
        self.verify_ssl = verify_ssl
        self._sleep = sleep
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _build_headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {**self.headers}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def execute(
        self,
        method: str,
        url: str,
        body: Any = None,
        token: Optional[str] = None,
        want_payload: bool = False,
    ) -> RequestOutcome:
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise UnsupportedMethodError(method)

        endpoint = endpoint_key(url)
        headers = self._build_headers(token)
        state = RetryState(self.retry_policy)
        # Network time of every attempt, timed-out ones included
        elapsed_ms = 0.0

        while True:
            attempt = await self._attempt(method, url, body, headers, want_payload)
            elapsed_ms += attempt.duration_ms
            if not attempt.success:
                self._note_failure(endpoint, attempt)

            if state.on_result(attempt.failure_kind) is RetryPhase.DONE:
                break

            self.ctx.health.signal(f"timeout on {method} {endpoint}")
            delay = state.next_delay()
            logger.debug("Retrying %s %s in %.2fs (retry %d)", method, endpoint, delay, state.retries_used)
            await self._sleep(delay)

        outcome = RequestOutcome(
            method=method,
            endpoint=endpoint,
            success=attempt.success,
            status=attempt.status,
            failure_kind=attempt.failure_kind,
            duration_ms=elapsed_ms,
            attempts=state.attempts,
            payload=attempt.payload if want_payload else None,
        )
        self.ctx.stats.record_outcome(outcome)
        return outcome

    async def _attempt(
        self, method: str, url: str, body: Any, headers: Dict[str, str], want_payload: bool = False,
    ) -> _Attempt:
        async with self.ctx.gate:
            async with self.ctx.endpoint_limiter.guard(url):
                start = time.perf_counter()
                try:
                    async with self.session.request(
                        method,
                        url,
                        headers=headers,
                        json=body if method in BODY_METHODS and body is not None else None,
                        timeout=self.timeout,
                        ssl=self.verify_ssl,
                    ) as response:
                        raw = await response.read()
                        latency = (time.perf_counter() - start) * 1000
                        if 200 <= response.status < 400:
                            payload = _decode_body(raw) if want_payload else None
                            return _Attempt(response.status, None, latency, payload=payload)

                        payload = _decode_body(raw)
                        text = payload if isinstance(payload, str) else json.dumps(payload) if payload else ""
                        return _Attempt(
                            response.status,
                            FailureKind.http(response.status),
                            latency,
                            message=f"HTTP {response.status}: {text}",
                            payload=payload,
                        )

                except asyncio.TimeoutError:
                    latency = (time.perf_counter() - start) * 1000
                    return _Attempt(0, FailureKind.TIMEOUT, latency, message="Timeout")
                except (aiohttp.ClientError, OSError) as e:
                    latency = (time.perf_counter() - start) * 1000
                    kind = classify_exception(e)
                    return _Attempt(0, kind, latency, message=f"{kind}: {type(e).__name__}: {e}")
                except Exception as e:
                    latency = (time.perf_counter() - start) * 1000
                    logger.debug("Unexpected transport error on %s %s", method, url, exc_info=True)
                    return _Attempt(0, FailureKind.UNKNOWN, latency, message=f"{type(e).__name__}: {e}")

    def _note_failure(self, endpoint: str, attempt: _Attempt):
        message = attempt.message or attempt.failure_kind or "unknown failure"
        self.ctx.stats.record_error_sample(endpoint, message)
        self.ctx.health.signal_if_exhausted(message)
