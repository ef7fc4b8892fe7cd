"""
🛒 Cart Reconciler
==================
Select cart items and verify the selection against the server.

The add-to-cart call does not reliably return the new line-item id in any one
shape, and the cart offers no read-after-write guarantee. So the flow never
trusts the client-side cache or the write response:

1. Seed the cart with one add if nothing is cached.
2. Read a fresh snapshot (first candidate read endpoint that yields rows).
3. Select a random 1-3 of the snapshot's line items.
4. Wait for the write to settle, read again, and check that something is
   selected. The cache is replaced with exactly what the server reports.
5. If nothing stuck, select everything once more and verify one last time.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence

from run_context import VirtualUser
from sample_data import PRODUCT_ID_MAX

logger = logging.getLogger(__name__)


SETTLE_DELAY_SECONDS = 0.25
MAX_SELECTED_ITEMS = 3

_ROW_ID_KEYS = ("cartItemId", "lineItemId", "id")
_SELECTED_KEYS = ("selected", "isSelected", "checked")
_ROW_LIST_PATHS = (
    (),
    ("data",),
    ("data", "items"),
    ("data", "cartItems"),
    ("data", "content"),
    ("items",),
    ("cartItems",),
)


@dataclass(frozen=True)
class CartRow:
    line_item_id: Any
    product_id: Any = None
    selected: bool = False


@dataclass
class ReconcileResult:
    ok: bool
    selected_count: int = 0
    rows: List[CartRow] = field(default_factory=list)

    @property
    def selected_rows(self) -> List[CartRow]:
        return [row for row in self.rows if row.selected]


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def _dig(value: Any, path: Sequence[str]) -> Any:
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _is_id(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool) and value != ""


def _is_selected(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return False


def _first_id(row: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        if _is_id(row.get(key)):
            return row[key]
    return None


def _parse_row(raw: Any) -> Optional[CartRow]:
    if not isinstance(raw, dict):
        return None
    line_item_id = _first_id(raw, _ROW_ID_KEYS)
    if line_item_id is None:
        return None

    product_id = raw.get("productId")
    if not _is_id(product_id):
        product_id = _dig(raw, ("product", "id"))
    if not _is_id(product_id):
        product_id = None

    selected = any(_is_selected(raw.get(key)) for key in _SELECTED_KEYS)
    return CartRow(line_item_id=line_item_id, product_id=product_id, selected=selected)


def parse_cart_rows(payload: Any) -> List[CartRow]:
    """Rows from the first list-valued location in the payload that parses."""
    for path in _ROW_LIST_PATHS:
        candidate = _dig(payload, path) if path else payload
        if not isinstance(candidate, list):
            continue
        rows = [row for row in map(_parse_row, candidate) if row is not None]
        if rows:
            return rows
    return []


# Line-item id extraction from an add-to-cart response. Each strategy is a
# pure function over the decoded body; the first one returning an id wins.

def _id_from_data_object(payload: Any) -> Any:
    data = _dig(payload, ("data",))
    return _first_id(data, _ROW_ID_KEYS) if isinstance(data, dict) else None


def _id_from_data_scalar(payload: Any) -> Any:
    data = _dig(payload, ("data",))
    return data if _is_id(data) else None


def _id_from_top_level(payload: Any) -> Any:
    return _first_id(payload, _ROW_ID_KEYS) if isinstance(payload, dict) else None


def _id_from_last_row(payload: Any) -> Any:
    rows = parse_cart_rows(payload)
    return rows[-1].line_item_id if rows else None


LINE_ITEM_ID_STRATEGIES = (
    _id_from_data_object,
    _id_from_data_scalar,
    _id_from_top_level,
    _id_from_last_row,
)


def extract_line_item_id(payload: Any) -> Any:
    for strategy in LINE_ITEM_ID_STRATEGIES:
        found = strategy(payload)
        if found is not None:
            return found
    return None


# =============================================================================
# RECONCILER
# =============================================================================

class CartEndpoints:
    """URL builders for the cart API."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def add(self, user: VirtualUser, product_id: Any) -> str:
        return f"{self.base_url}/cart/add?productId={product_id}&quantity=1&userId={user.user_id}"

    def reads(self, user: VirtualUser) -> List[str]:
        return [
            f"{self.base_url}/cart/{user.user_id}",
            f"{self.base_url}/cart?userId={user.user_id}",
            f"{self.base_url}/cart/user/{user.user_id}",
        ]

    def select(self, user: VirtualUser) -> str:
        return f"{self.base_url}/cart/select?userId={user.user_id}"


class CartReconciler:
    """
    Stateful select-and-verify flow over a RequestExecutor.

    Every failure comes back as a result, never as an exception.
    """

    def __init__(
        self,
        executor,
        base_url: str,
        rng: Optional[random.Random] = None,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        pick_product: Optional[Callable[[VirtualUser], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.executor = executor
        self.endpoints = CartEndpoints(base_url)
        self.rng = rng or random.Random()
        self.settle_delay = settle_delay
        self._pick_product = pick_product or (lambda user: self.rng.randint(1, PRODUCT_ID_MAX))
        self._sleep = sleep

    async def add_to_cart(self, user: VirtualUser, product_id: Any) -> bool:
        outcome = await self.executor.execute(
            "POST", self.endpoints.add(user, product_id), token=user.token, want_payload=True,
        )
        if not outcome.success:
            return False
        user.product_ids.add(product_id)
        line_item_id = extract_line_item_id(outcome.payload)
        if line_item_id is not None:
            user.cart_item_ids.add(line_item_id)
        return True

    async def fetch_snapshot(self, user: VirtualUser) -> List[CartRow]:
        for url in self.endpoints.reads(user):
            outcome = await self.executor.execute("GET", url, token=user.token, want_payload=True)
            if not outcome.success:
                continue
            rows = parse_cart_rows(outcome.payload)
            if rows:
                return rows
        return []

    async def _select(self, user: VirtualUser, line_item_ids: List[Any]) -> bool:
        outcome = await self.executor.execute(
            "POST", self.endpoints.select(user), body=list(line_item_ids), token=user.token,
        )
        return outcome.success

    def _verify(self, user: VirtualUser, rows: List[CartRow]) -> ReconcileResult:
        selected = sum(1 for row in rows if row.selected)
        if selected == 0:
            return ReconcileResult(ok=False, selected_count=0, rows=rows)
        user.cart_item_ids = {row.line_item_id for row in rows}
        return ReconcileResult(ok=True, selected_count=selected, rows=rows)

    async def select_and_verify(self, user: VirtualUser) -> ReconcileResult:
        if not user.cart_item_ids:
            await self.add_to_cart(user, self._pick_product(user))

        rows = await self.fetch_snapshot(user)
        if not rows:
            logger.debug("User %s: no cart snapshot available", user.user_name)
            return ReconcileResult(ok=False)

        ids = [row.line_item_id for row in rows]
        self.rng.shuffle(ids)
        chosen = ids[: self.rng.randint(1, min(MAX_SELECTED_ITEMS, len(ids)))]
        if not await self._select(user, chosen):
            return ReconcileResult(ok=False, rows=rows)

        await self._sleep(self.settle_delay)
        verified = await self.fetch_snapshot(user)
        result = self._verify(user, verified)
        if result.ok:
            return result

        # The write was accepted but nothing shows as selected: select the
        # whole latest snapshot once and check again.
        latest = verified or rows
        if not await self._select(user, [row.line_item_id for row in latest]):
            return ReconcileResult(ok=False, rows=latest)

        await self._sleep(self.settle_delay)
        result = self._verify(user, await self.fetch_snapshot(user))
        if not result.ok:
            logger.debug("User %s: selection not applied after fallback", user.user_name)
        return result
