"""
🎲 Scenario Selection
=====================
Weighted-random action picking for virtual users.

Each action carries a weight and a light/heavy flag. While the health monitor
reports the target as degraded only light actions are eligible and think-time
widens, so every virtual user sheds load at the same moment.

Action mix (weights from production-like traffic):
    product detail 12, keyword search 12, add to cart 8, recommendations 8,
    wishlist 6, new arrivals 6, category listing 6, brand listing 6,
    idle 5, flash sales 4, my orders 3, user detail 2, profile 2, checkout 1
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from cart_reconciler import CartReconciler
from health_monitor import HealthMonitor
from run_context import VirtualUser
from sample_data import SampleData

logger = logging.getLogger(__name__)


NORMAL_THINK_TIME = (0.1, 0.3)
DEGRADED_THINK_TIME = (0.6, 1.8)
IDLE_PAUSE = (0.3, 1.2)


class UserAction(Enum):
    """E-commerce user actions."""
    VIEW_PRODUCT = "view_product"
    SEARCH = "search"
    ADD_TO_CART = "add_to_cart"
    ADD_TO_WISHLIST = "add_to_wishlist"
    RECOMMENDATIONS = "recommendations"
    NEW_ARRIVALS = "new_arrivals"
    BROWSE_CATEGORY = "browse_category"
    BROWSE_BRAND = "browse_brand"
    FLASH_SALES = "flash_sales"
    MY_ORDERS = "my_orders"
    USER_DETAIL = "user_detail"
    PROFILE = "profile"
    CHECKOUT = "checkout"
    IDLE = "idle"


# (weight, heavy)
ACTION_MIX: Dict[UserAction, Tuple[float, bool]] = {
    UserAction.VIEW_PRODUCT: (12, False),
    UserAction.SEARCH: (12, True),
    UserAction.ADD_TO_CART: (8, False),
    UserAction.ADD_TO_WISHLIST: (6, False),
    UserAction.RECOMMENDATIONS: (8, False),
    UserAction.NEW_ARRIVALS: (6, True),
    UserAction.BROWSE_CATEGORY: (6, True),
    UserAction.BROWSE_BRAND: (6, True),
    UserAction.FLASH_SALES: (4, False),
    UserAction.MY_ORDERS: (3, False),
    UserAction.USER_DETAIL: (2, False),
    UserAction.PROFILE: (2, False),
    UserAction.CHECKOUT: (1, True),
    UserAction.IDLE: (5, False),
}


@dataclass(frozen=True)
class Action:
    name: str
    weight: float
    run: Callable[[VirtualUser], Awaitable[Any]]
    heavy: bool = False


def pick_weighted(candidates: Sequence[Action], rng: random.Random) -> Action:
    """
    Draw r in [0, total) and subtract weights in order until r goes negative.
    Falls back to the last candidate (only reachable when all weights are 0).
    """
    if not candidates:
        raise ValueError("No candidates to pick from")
    total = sum(c.weight for c in candidates)
    r = rng.random() * total
    for candidate in candidates:
        r -= candidate.weight
        if r < 0:
            return candidate
    return candidates[-1]


class ScenarioSelector:
    """Picks the next action and the think-time after it."""

    def __init__(
        self,
        actions: Sequence[Action],
        health: HealthMonitor,
        rng: Optional[random.Random] = None,
        think_time: Tuple[float, float] = NORMAL_THINK_TIME,
        degraded_think_time: Tuple[float, float] = DEGRADED_THINK_TIME,
    ):
        self.actions = list(actions)
        if not self.actions:
            raise ValueError("ScenarioSelector needs at least one action")
        self.light_actions = [a for a in self.actions if not a.heavy]
        if not self.light_actions:
            logger.warning("Action mix has no light actions; backoff will only widen think-time")
        self.health = health
        self.rng = rng or random.Random()
        self.think_time_range = think_time
        self.degraded_think_time_range = degraded_think_time

    def eligible(self) -> List[Action]:
        if self.health.is_degraded() and self.light_actions:
            return self.light_actions
        return self.actions

    def choose(self) -> Action:
        return pick_weighted(self.eligible(), self.rng)

    def think_time(self) -> float:
        low, high = self.degraded_think_time_range if self.health.is_degraded() else self.think_time_range
        return self.rng.uniform(low, high)


# =============================================================================
# ACTION CATALOG
# =============================================================================

class EcommerceScenarios:
    """
    The concrete user actions against the shop API. Every request goes
    through the RequestExecutor; results are recorded there.
    """

    def __init__(
        self,
        executor,
        reconciler: CartReconciler,
        base_url: str,
        sample: Optional[SampleData] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.executor = executor
        self.reconciler = reconciler
        self.base_url = base_url.rstrip("/")
        self.sample = sample or SampleData()
        self.rng = self.sample.rng
        self._sleep = sleep

        self.orders_placed = 0
        self.checkouts_attempted = 0
        self.checkouts_verified = 0

    def actions(self, mix: Optional[Dict[UserAction, Tuple[float, bool]]] = None) -> List[Action]:
        handlers = {
            UserAction.VIEW_PRODUCT: self.view_product,
            UserAction.SEARCH: self.search,
            UserAction.ADD_TO_CART: self.add_to_cart,
            UserAction.ADD_TO_WISHLIST: self.add_to_wishlist,
            UserAction.RECOMMENDATIONS: self.recommendations,
            UserAction.NEW_ARRIVALS: self.new_arrivals,
            UserAction.BROWSE_CATEGORY: self.browse_category,
            UserAction.BROWSE_BRAND: self.browse_brand,
            UserAction.FLASH_SALES: self.flash_sales,
            UserAction.MY_ORDERS: self.my_orders,
            UserAction.USER_DETAIL: self.user_detail,
            UserAction.PROFILE: self.profile,
            UserAction.CHECKOUT: self.checkout,
            UserAction.IDLE: self.idle,
        }
        return [
            Action(name=action.value, weight=weight, run=handlers[action], heavy=heavy)
            for action, (weight, heavy) in (mix or ACTION_MIX).items()
        ]

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # Catalog reads

    async def view_product(self, user: VirtualUser):
        product_id = self.sample.product_id()
        outcome = await self.executor.execute("GET", self._url(f"/products/{product_id}"))
        if outcome.success:
            user.product_ids.add(product_id)
        return outcome

    async def search(self, user: VirtualUser):
        keyword = quote(self.sample.keyword())
        return await self.executor.execute("GET", self._url(f"/products?keyword={keyword}"))

    async def new_arrivals(self, user: VirtualUser):
        return await self.executor.execute(
            "GET", self._url("/products?filterType=NEW_ARRIVALS&page=0&size=10&sortBy=createdAt&sortDir=desc"),
        )

    async def browse_category(self, user: VirtualUser):
        category_id = self.sample.category_id()
        return await self.executor.execute(
            "GET", self._url(f"/products?categoryId={category_id}&page=0&size=10&sortBy=id&sortDir=asc"),
        )

    async def browse_brand(self, user: VirtualUser):
        brand = quote(self.sample.brand())
        return await self.executor.execute(
            "GET", self._url(f"/products?brand={brand}&page=0&size=10&sortBy=price&sortDir=asc"),
        )

    async def flash_sales(self, user: VirtualUser):
        return await self.executor.execute("GET", self._url("/flash-sales/current"))

    # Authenticated reads

    async def recommendations(self, user: VirtualUser):
        return await self.executor.execute(
            "GET", self._url(f"/recommendations/{user.user_id}?k=8"), token=user.token,
        )

    async def my_orders(self, user: VirtualUser):
        return await self.executor.execute("GET", self._url(f"/orders/user/{user.user_id}"), token=user.token)

    async def user_detail(self, user: VirtualUser):
        return await self.executor.execute("GET", self._url(f"/users/{user.user_id}"), token=user.token)

    async def profile(self, user: VirtualUser):
        return await self.executor.execute("GET", self._url("/users/profile"), token=user.token)

    # Writes

    async def add_to_cart(self, user: VirtualUser):
        return await self.reconciler.add_to_cart(user, self.sample.product_id())

    async def add_to_wishlist(self, user: VirtualUser):
        product_id = self.sample.product_id()
        outcome = await self.executor.execute(
            "POST", self._url(f"/wishlist/add?productId={product_id}&userId={user.user_id}"), token=user.token,
        )
        if outcome.success:
            user.wishlist.add(product_id)
        return outcome

    async def checkout(self, user: VirtualUser) -> bool:
        """Select and verify cart items, then place an order for them."""
        self.checkouts_attempted += 1
        result = await self.reconciler.select_and_verify(user)
        if not result.ok or result.selected_count == 0:
            return False
        self.checkouts_verified += 1

        product_ids = [
            row.product_id if row.product_id is not None else self.sample.product_id()
            for row in result.selected_rows
        ]
        outcome = await self.executor.execute(
            "POST",
            self._url(f"/orders?userId={user.user_id}"),
            body=self.sample.order_payload(product_ids),
            token=user.token,
        )
        if outcome.success:
            self.orders_placed += 1
        else:
            logger.debug("User %s: order rejected (%s)", user.user_name, outcome.failure_kind)
        return outcome.success

    async def idle(self, user: VirtualUser):
        await self._sleep(self.rng.uniform(*IDLE_PAUSE))

    def to_dict(self) -> Dict[str, int]:
        return {
            "checkouts_attempted": self.checkouts_attempted,
            "checkouts_verified": self.checkouts_verified,
            "orders_placed": self.orders_placed,
        }
