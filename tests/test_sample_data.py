"""Tests for generated request inputs."""

import random

from sample_data import BRANDS, CATEGORY_ID_MAX, KEYWORDS, PRODUCT_ID_MAX, SampleData


def test_ids_in_range():
    sample = SampleData(rng=random.Random(4))
    for _ in range(200):
        assert 1 <= sample.product_id() <= PRODUCT_ID_MAX
        assert 1 <= sample.category_id() <= CATEGORY_ID_MAX
        assert sample.keyword() in KEYWORDS
        assert sample.brand() in BRANDS


def test_same_seed_same_order():
    first = SampleData(rng=random.Random(9)).order_payload([1, 2])
    second = SampleData(rng=random.Random(9)).order_payload([1, 2])
    assert first == second


def test_order_payload_shape():
    payload = SampleData(rng=random.Random(2)).order_payload([10, 20])
    assert payload["phoneNumber"].startswith("09")
    assert len(payload["phoneNumber"]) == 10
    assert payload["shippingAddress"]
    assert [d["productId"] for d in payload["orderDetails"]] == [10, 20]
    assert all(d["quantity"] == 1 for d in payload["orderDetails"])
