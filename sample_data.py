"""
Random inputs for the e-commerce scenarios: product / category ids, search
keywords, brands, and shipping details for orders.
"""

import random
from typing import Any, Dict, List, Optional

from faker import Faker


PRODUCT_ID_MAX = 7824
CATEGORY_ID_MAX = 24

KEYWORDS = ["camera", "laptop", "phone", "watch", "mouse"]

BRANDS = [
    "VideoSecu", "Barnes & Noble", "LASUS", "Sony", "RCA", "Belkin", "Brother",
    "Kensington", "Koss", "Olympus", "Sangean", "Seagate", "NETGEAR", "Linksys",
    "Monster", "MMUSC", "Viking", "Garmin", "Bushnell", "Sennheiser", "Panasonic",
]


class SampleData:
    """Seedable generator for request inputs."""

    def __init__(self, rng: Optional[random.Random] = None, locale: str = "en_US"):
        self.rng = rng or random.Random()
        self.fake = Faker(locale)
        self.fake.seed_instance(self.rng.getrandbits(32))

    def product_id(self) -> int:
        return self.rng.randint(1, PRODUCT_ID_MAX)

    def category_id(self) -> int:
        return self.rng.randint(1, CATEGORY_ID_MAX)

    def keyword(self) -> str:
        return self.rng.choice(KEYWORDS)

    def brand(self) -> str:
        return self.rng.choice(BRANDS)

    def phone(self) -> str:
        return self.fake.numerify("09########")

    def address(self) -> str:
        return f"{self.fake.street_address()}, {self.fake.city()}"

    def price(self) -> int:
        return self.rng.randint(100000, 5000000)

    def order_payload(self, product_ids: List[Any]) -> Dict[str, Any]:
        return {
            "shippingAddress": self.address(),
            "phoneNumber": self.phone(),
            "paymentMethodId": self.rng.randint(1, 5),
            "shippingMethodId": self.rng.randint(1, 4),
            "orderDetails": [
                {"productId": pid, "quantity": 1, "price": self.price()}
                for pid in product_ids
            ],
        }
