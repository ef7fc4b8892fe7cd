"""
Run-wide shared state and per-user state.

One RunContext is created per run and handed to every component that needs
the shared counters, the health signal, or the gates. Everything in here is
mutated synchronously between awaits, which is what makes it safe to share
across virtual-user tasks on a single event loop.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Set

from concurrency_gate import ConcurrencyGate, EndpointLimiter
from health_monitor import HealthMonitor
from load_metrics import StatsCollector


DEFAULT_HEAVY_ENDPOINTS = (
    {"pattern": r"[?&]keyword=", "max": 20},
    {"pattern": r"[?&]sortBy=", "max": 30},
)


@dataclass
class VirtualUser:
    """One logged-in simulated client. Only its own loop mutates it."""
    user_id: int
    user_name: str
    token: str
    cart_item_ids: Set[Any] = field(default_factory=set)
    product_ids: Set[Any] = field(default_factory=set)
    wishlist: Set[Any] = field(default_factory=set)
    actions_performed: int = 0


@dataclass
class RunContext:
    gate: ConcurrencyGate
    endpoint_limiter: EndpointLimiter = field(default_factory=EndpointLimiter)
    health: HealthMonitor = field(default_factory=HealthMonitor)
    stats: StatsCollector = field(default_factory=StatsCollector)

    @classmethod
    def create(
        cls,
        max_concurrency: int = 200,
        heavy_endpoints: Optional[Iterable[Mapping]] = DEFAULT_HEAVY_ENDPOINTS,
        health: Optional[HealthMonitor] = None,
    ) -> "RunContext":
        limiter = EndpointLimiter()
        for entry in heavy_endpoints or ():
            limiter.register(entry["pattern"], int(entry["max"]))
        return cls(
            gate=ConcurrencyGate(max_concurrency),
            endpoint_limiter=limiter,
            health=health or HealthMonitor(),
        )

    def gate_stats(self) -> dict:
        return {
            "global": self.gate.stats(),
            "endpoints": [gate.stats() for gate in self.endpoint_limiter.gates],
        }
