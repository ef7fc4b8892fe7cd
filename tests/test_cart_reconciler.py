"""Tests for cart snapshot parsing and the select-and-verify flow."""

import random

import pytest

from cart_reconciler import (
    CartReconciler,
    CartRow,
    extract_line_item_id,
    parse_cart_rows,
)

BASE_URL = "https://shop.test/api/v1"
CART_READ = f"{BASE_URL}/cart/7"
CART_READ_QUERY = f"{BASE_URL}/cart?userId=7"
CART_READ_USER = f"{BASE_URL}/cart/user/7"
CART_SELECT = f"{BASE_URL}/cart/select?userId=7"


def cart(*rows):
    """Cart payload in the shape the shop API returns."""
    return {
        "data": {
            "items": [
                {"cartItemId": item_id, "productId": 100 + item_id, "selected": selected}
                for item_id, selected in rows
            ]
        }
    }


@pytest.fixture
def reconciler(scripted_executor, recording_sleep):
    return CartReconciler(
        scripted_executor,
        BASE_URL,
        rng=random.Random(3),
        pick_product=lambda user: 555,
        sleep=recording_sleep,
    )


@pytest.fixture
def cached_user(user):
    user.cart_item_ids = {999}
    return user


class TestParsing:

    @pytest.mark.parametrize("payload", [
        [{"id": 1}, {"id": 2}],
        {"data": [{"id": 1}, {"id": 2}]},
        {"data": {"items": [{"cartItemId": 1}, {"cartItemId": 2}]}},
        {"data": {"cartItems": [{"lineItemId": 1}, {"lineItemId": 2}]}},
        {"data": {"content": [{"id": 1}, {"id": 2}]}},
        {"items": [{"id": 1}, {"id": 2}]},
        {"cartItems": [{"id": 1}, {"id": 2}]},
    ])
    def test_row_locations(self, payload):
        assert [row.line_item_id for row in parse_cart_rows(payload)] == [1, 2]

    def test_row_fields(self):
        rows = parse_cart_rows({"data": [
            {"cartItemId": 5, "product": {"id": 42}, "isSelected": True},
            {"id": "6", "productId": 43, "checked": False},
            {"name": "no id here"},
        ]})
        assert rows == [
            CartRow(line_item_id=5, product_id=42, selected=True),
            CartRow(line_item_id="6", product_id=43, selected=False),
        ]

    @pytest.mark.parametrize("flag, expected", [
        (True, True),
        (1, True),
        ("true", True),
        ("TRUE", True),
        ("1", True),
        (False, False),
        (0, False),
        (2, False),
        ("false", False),
        ("0", False),
        ("", False),
        (None, False),
    ])
    def test_selected_flag_values(self, flag, expected):
        (row,) = parse_cart_rows([{"id": 1, "selected": flag}])
        assert row.selected is expected

    @pytest.mark.parametrize("payload", [None, {}, {"data": None}, {"data": []}, "oops", {"data": {"items": []}}])
    def test_no_rows(self, payload):
        assert parse_cart_rows(payload) == []


class TestLineItemIdExtraction:

    @pytest.mark.parametrize("payload, expected", [
        ({"data": {"cartItemId": 11}}, 11),
        ({"data": {"id": 12}}, 12),
        ({"data": 13}, 13),
        ({"cartItemId": 14}, 14),
        ({"data": {"items": [{"id": 1}, {"id": 15}]}}, 15),
        ([{"id": 1}, {"id": 16}], 16),
    ])
    def test_strategies(self, payload, expected):
        assert extract_line_item_id(payload) == expected

    @pytest.mark.parametrize("payload", [None, {}, {"data": True}, {"message": "ok"}, "added"])
    def test_nothing_found(self, payload):
        assert extract_line_item_id(payload) is None


class TestAddToCart:

    @pytest.mark.asyncio
    async def test_add_caches_line_item(self, reconciler, scripted_executor, user):
        url = f"{BASE_URL}/cart/add?productId=10&quantity=1&userId=7"
        scripted_executor.script("POST", url, (True, {"data": {"cartItemId": 77}}))

        assert await reconciler.add_to_cart(user, 10) is True
        assert user.cart_item_ids == {77}
        assert user.product_ids == {10}

    @pytest.mark.asyncio
    async def test_failed_add_leaves_cache(self, reconciler, user):
        assert await reconciler.add_to_cart(user, 10) is False
        assert user.cart_item_ids == set()


class TestSelectAndVerify:

    @pytest.mark.asyncio
    async def test_verified_selection_replaces_cache(
        self, reconciler, scripted_executor, cached_user, recording_sleep,
    ):
        scripted_executor.script(
            "GET", CART_READ,
            (True, cart((1, False), (2, False), (3, False), (4, False), (5, False))),
            (True, cart((1, True), (2, True), (3, False), (4, False), (5, False))),
        )
        scripted_executor.script("POST", CART_SELECT, (True, None))

        result = await reconciler.select_and_verify(cached_user)

        assert result.ok
        assert result.selected_count == 2
        assert [row.product_id for row in result.selected_rows] == [101, 102]
        assert cached_user.cart_item_ids == {1, 2, 3, 4, 5}
        assert recording_sleep.delays == [0.25]

        (selected,) = scripted_executor.calls_to("POST", CART_SELECT)
        assert 1 <= len(selected) <= 3
        assert set(selected) <= {1, 2, 3, 4, 5}

    @pytest.mark.asyncio
    async def test_fallback_selects_whole_snapshot(self, reconciler, scripted_executor, cached_user):
        scripted_executor.script(
            "GET", CART_READ,
            (True, cart((1, False), (2, False))),
            (True, cart((1, False), (2, False), (3, False))),
            (True, cart((1, True), (2, True), (3, True))),
        )
        scripted_executor.script("POST", CART_SELECT, (True, None), (True, None))

        result = await reconciler.select_and_verify(cached_user)

        assert result.ok
        assert result.selected_count == 3
        first, fallback = scripted_executor.calls_to("POST", CART_SELECT)
        assert sorted(fallback) == [1, 2, 3]
        assert cached_user.cart_item_ids == {1, 2, 3}

    @pytest.mark.asyncio
    async def test_silently_dropped_selection_fails(
        self, reconciler, scripted_executor, cached_user, recording_sleep,
    ):
        unselected = cart((1, False), (2, False))
        scripted_executor.script("GET", CART_READ, (True, unselected), (True, unselected), (True, unselected))
        scripted_executor.script("POST", CART_SELECT, (True, None), (True, None))

        result = await reconciler.select_and_verify(cached_user)

        assert not result.ok
        assert result.selected_count == 0
        assert len(scripted_executor.calls_to("POST", CART_SELECT)) == 2
        assert recording_sleep.delays == [0.25, 0.25]
        assert cached_user.cart_item_ids == {999}

    @pytest.mark.asyncio
    async def test_no_snapshot_fails_without_select(self, reconciler, scripted_executor, cached_user):
        scripted_executor.script("GET", CART_READ_QUERY, (True, {"data": []}))

        result = await reconciler.select_and_verify(cached_user)

        assert not result.ok
        assert scripted_executor.calls_to("POST", CART_SELECT) == []
        reads = [url for method, url, _ in scripted_executor.calls if method == "GET"]
        assert reads == [CART_READ, CART_READ_QUERY, CART_READ_USER]

    @pytest.mark.asyncio
    async def test_snapshot_falls_through_to_next_read_endpoint(
        self, reconciler, scripted_executor, cached_user,
    ):
        scripted_executor.script("GET", CART_READ_QUERY, (True, cart((1, False))), (True, cart((1, True))))
        scripted_executor.script("POST", CART_SELECT, (True, None))

        result = await reconciler.select_and_verify(cached_user)

        assert result.ok
        assert scripted_executor.calls_to("POST", CART_SELECT) == [[1]]

    @pytest.mark.asyncio
    async def test_rejected_select_write_fails(self, reconciler, scripted_executor, cached_user):
        scripted_executor.script("GET", CART_READ, (True, cart((1, False))))

        result = await reconciler.select_and_verify(cached_user)

        assert not result.ok
        reads = [url for method, url, _ in scripted_executor.calls if method == "GET"]
        assert reads == [CART_READ]
        assert cached_user.cart_item_ids == {999}

    @pytest.mark.asyncio
    async def test_empty_cache_seeds_cart_first(self, reconciler, scripted_executor, user):
        add_url = f"{BASE_URL}/cart/add?productId=555&quantity=1&userId=7"
        scripted_executor.script("POST", add_url, (True, {"data": {"cartItemId": 1}}))
        scripted_executor.script("GET", CART_READ, (True, cart((1, False))), (True, cart((1, True))))
        scripted_executor.script("POST", CART_SELECT, (True, None))

        result = await reconciler.select_and_verify(user)

        assert result.ok
        assert scripted_executor.calls[0][:2] == ("POST", add_url)
        assert user.cart_item_ids == {1}

    @pytest.mark.asyncio
    async def test_string_false_flags_do_not_verify(self, reconciler, scripted_executor, cached_user):
        stringly = {"data": [{"cartItemId": 1, "selected": "false"}, {"cartItemId": 2, "selected": "0"}]}
        scripted_executor.script("GET", CART_READ, (True, stringly), (True, stringly), (True, stringly))
        scripted_executor.script("POST", CART_SELECT, (True, None), (True, None))

        result = await reconciler.select_and_verify(cached_user)

        assert not result.ok
        assert cached_user.cart_item_ids == {999}
