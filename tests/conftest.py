"""Shared fixtures and fakes for the load tester tests."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Project modules live at the repository root
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from load_metrics import RequestOutcome  # noqa: E402
from request_executor import endpoint_key  # noqa: E402
from run_context import VirtualUser  # noqa: E402


BASE_URL = "https://shop.test/api/v1"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


class ScriptedExecutor:
    """
    RequestExecutor double. Responses are scripted per (method, url) and
    consumed in order; unscripted calls fail with HTTP 500.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str, Any]] = []
        self._routes: Dict[Tuple[str, str], List[Tuple[bool, Any]]] = {}

    def script(self, method: str, url: str, *responses: Tuple[bool, Any]):
        self._routes.setdefault((method, url), []).extend(responses)

    def calls_to(self, method: str, url: str) -> List[Any]:
        return [body for m, u, body in self.calls if m == method and u == url]

    async def execute(
        self,
        method: str,
        url: str,
        body: Any = None,
        token: Optional[str] = None,
        want_payload: bool = False,
    ) -> RequestOutcome:
        self.calls.append((method, url, body))
        queue = self._routes.get((method, url))
        success, payload = queue.pop(0) if queue else (False, None)
        return RequestOutcome(
            method=method,
            endpoint=endpoint_key(url),
            success=success,
            status=200 if success else 500,
            failure_kind=None if success else "HTTP_500",
            duration_ms=1.0,
            payload=payload if want_payload else None,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def scripted_executor():
    return ScriptedExecutor()


@pytest.fixture
def user():
    return VirtualUser(user_id=7, user_name="user0007", token="tok-7")
