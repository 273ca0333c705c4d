"""Tests for product to storage row conversion."""

from pricecrawler.catalog import parse_product_from_api
from pricecrawler.converters import products_to_records_and_snapshots
from pricecrawler.validator import validate_product


def product(raw):
    return validate_product(parse_product_from_api(raw)).product


class TestConverters:
    def test_records_and_snapshots(self, raw_product):
        promotions = [{"rewardValue": 249, "rewardType": "SPECIAL", "cardDependencyFlag": False}]
        products = [
            product(raw_product("A", promotions=promotions)),
            product(raw_product("B", availability=["ONLINE"])),
        ]

        records, snapshots = products_to_records_and_snapshots(products, "O1", "2024-01-01T00:00:00+00:00")

        assert [r.product_id for r in records] == ["A", "B"]
        assert records[0].first_seen == records[0].last_seen == "2024-01-01T00:00:00+00:00"
        assert records[0].category_l2 == "Flour"

        first, second = snapshots
        assert first.outlet_id == "O1"
        assert first.unit == "1kg"
        assert first.in_store is True and first.online is True
        assert first.promo_price == 2.49
        assert first.promo_card_required is False
        assert second.in_store is False and second.online is True
        assert second.promo_price is None
        assert {s.scraped_at for s in snapshots} == {"2024-01-01T00:00:00+00:00"}
