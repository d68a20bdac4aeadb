"""
Unit Tests - Star Schema Transformation
"""
from datetime import date
from decimal import Decimal

import polars as pl
import pytest

from conftest import make_frames
from star_etl.exceptions import SchemaMismatch
from star_etl.schema.models import TARGET_SCHEMAS
from star_etl.transformation.transformers import StarSchemaTransformer, transform_sources


def minimal_sources(with_order: bool = True, quantity: int = 3, price: Decimal = Decimal("10.00")):
    """One customer buying three units of one product at 10.00 unless told otherwise"""
    rows = {
        "customers": [{"customerNumber": 1, "customerName": "Acme", "city": "Millbrae",
                       "state": "CA", "postalCode": "94016", "country": "USA"}],
        "productlines": [{"productLine": "Electronics", "textDescription": "Electronic devices"}],
        "products": [{"productCode": "A", "productName": "Widget", "productLine": "Electronics"}],
        "orders": [{"orderNumber": 1, "orderDate": date(2024, 3, 1), "status": "Shipped",
                    "customerNumber": 1}] if with_order else [],
        "orderdetails": [{"orderNumber": 1, "productCode": "A", "quantityOrdered": quantity,
                          "priceEach": price, "orderLineNumber": 1}],
    }
    return make_frames(rows)


class TestStarSchemaTransformer:
    """Tests for StarSchemaTransformer"""

    def test_single_order_line(self):
        result = transform_sources(minimal_sources())

        fact = result.tables["fact_orders"]
        assert fact.height == 1
        assert fact["order_amount"].to_list() == [Decimal("30.00")]
        assert fact["postal_code"].to_list() == ["94016"]
        assert fact["order_year"].to_list() == [2024]
        assert result.tables["dim_products"]["product_line_description"].to_list() == ["Electronic devices"]
        assert result.tables["dim_locations"].rows() == [("94016", "Millbrae", "CA", "USA")]
        assert result.rows_skipped["fact_orders"] == 0

    def test_line_without_order_is_skipped(self):
        result = transform_sources(minimal_sources(with_order=False))

        assert result.tables["fact_orders"].height == 0
        assert result.rows_skipped["fact_orders"] == 1
        assert result.gap_counts() == {"orderdetails.order_not_found": 1}
        assert result.tables["dim_customers"].height == 1

    def test_output_tables_match_schema(self, source_frames):
        result = transform_sources(source_frames)

        assert set(result.tables) == set(TARGET_SCHEMAS)
        for name, df in result.tables.items():
            assert df.schema == pl.Schema(TARGET_SCHEMAS[name].polars_schema), name

    def test_measures(self, source_frames):
        fact = transform_sources(source_frames).tables["fact_orders"]

        amounts = dict(zip(zip(fact["order_number"], fact["product_code"]), fact["order_amount"]))
        assert amounts == {
            (10100, "S10_1678"): Decimal("2871.00"),
            (10100, "S10_1949"): Decimal("10715.00"),
            (10101, "S10_1678"): Decimal("30.00"),
            (10101, "S12_1099"): Decimal("2701.50"),
        }
        for row in fact.iter_rows(named=True):
            assert row["order_amount"] == row["quantity"] * row["unit_price"]

    def test_large_order_amount_is_exact(self):
        frames = minimal_sources(quantity=10**9, price=Decimal("99999999.99"))

        fact = transform_sources(frames).tables["fact_orders"]

        assert fact["order_amount"].to_list() == [Decimal("99999999990000000.00")]
        assert fact.schema["order_amount"] == TARGET_SCHEMAS["fact_orders"].polars_schema["order_amount"]

    def test_price_wider_than_money_raises_schema_mismatch(self):
        frames = minimal_sources()
        frames["orderdetails"] = frames["orderdetails"].with_columns(
            pl.Series("priceEach", [Decimal("123456789012.00")], dtype=pl.Decimal(38, 2))
        )

        with pytest.raises(SchemaMismatch) as exc_info:
            transform_sources(frames)

        assert exc_info.value.entity == "orderdetails"
        violation = exc_info.value.details["violations"][0]
        assert violation["column"] == "priceEach"
        assert violation["key"] == [1, "A"]

    def test_referential_integrity(self, source_frames):
        tables = transform_sources(source_frames).tables
        fact = tables["fact_orders"]

        assert set(fact["customer_number"]) <= set(tables["dim_customers"]["customer_number"])
        assert set(fact["product_code"]) <= set(tables["dim_products"]["product_code"])
        assert set(fact["postal_code"]) <= set(tables["dim_locations"]["postal_code"])

    def test_exclusion_accounting(self, source_frames):
        result = transform_sources(source_frames)

        total_lines = source_frames["orderdetails"].height
        assert result.tables["fact_orders"].height + result.rows_skipped["fact_orders"] == total_lines
        assert result.gap_counts() == {
            "orderdetails.customer_not_found": 1,
            "orderdetails.missing_postal_code": 1,
            "orderdetails.order_not_found": 1,
            "orderdetails.product_not_found": 1,
            "products.product_line_not_found": 1,
        }

    def test_skipped_line_gap_details(self, source_frames):
        result = transform_sources(source_frames)

        gaps = {g.key: g for g in result.referential_gaps if g.entity == "orderdetails"}
        assert gaps[(10102, "S10_1678")].reference == "customers"
        assert gaps[(10102, "S10_1678")].reference_key == 999
        assert gaps[(10104, "S10_1678")].reason == "order_not_found"
        assert gaps[(10100, "S99_0000")].reference_key == "S99_0000"

    def test_dimensions_conserve_source_rows(self, source_frames):
        tables = transform_sources(source_frames).tables

        assert tables["dim_customers"].height == source_frames["customers"].height
        assert tables["dim_products"].height == source_frames["products"].height

    def test_product_without_line_keeps_null_description(self, source_frames):
        products = transform_sources(source_frames).tables["dim_products"]

        orphan = products.filter(pl.col("product_code") == "S12_1099").row(0, named=True)
        assert orphan["product_line"] == "Planes"
        assert orphan["product_line_description"] is None

    def test_locations_one_row_per_postal_code(self, source_frames):
        locations = transform_sources(source_frames).tables["dim_locations"]

        assert locations["postal_code"].to_list() == ["3004", "44000", "83030"]

    def test_location_tie_break_keeps_first_customer(self, source_rows):
        source_rows["customers"].append({
            "customerNumber": 125, "customerName": "Havel & Zbyszek Co", "city": "Paris",
            "postalCode": "44000", "country": "France",
        })

        result = transform_sources(make_frames(source_rows))

        nantes = result.tables["dim_locations"].filter(pl.col("postal_code") == "44000")
        assert nantes["city"].to_list() == ["Nantes"]
        assert len(result.location_conflicts) == 1
        conflict = result.location_conflicts[0]
        assert conflict.postal_code == "44000"
        assert conflict.kept["city"] == "Nantes"
        assert [v["city"] for v in conflict.variants] == ["Nantes", "Paris"]

    def test_strict_locations_rejects_conflicts(self, source_rows):
        source_rows["customers"].append({
            "customerNumber": 125, "customerName": "Havel & Zbyszek Co", "city": "Paris",
            "postalCode": "44000", "country": "France",
        })

        with pytest.raises(SchemaMismatch) as exc_info:
            StarSchemaTransformer(strict_locations=True).transform(make_frames(source_rows))

        assert exc_info.value.entity == "customers"

    def test_deterministic_regardless_of_row_order(self, source_frames):
        shuffled = {
            name: df.sample(fraction=1.0, shuffle=True, seed=7)
            for name, df in source_frames.items()
        }

        first = transform_sources(source_frames)
        second = transform_sources(shuffled)

        for name in first.tables:
            assert first.tables[name].equals(second.tables[name]), name
        assert first.gap_counts() == second.gap_counts()

    def test_empty_sources(self):
        frames = make_frames({name: [] for name in
                              ["customers", "products", "productlines", "orders", "orderdetails"]})

        result = transform_sources(frames)

        assert result.rows_written == {
            "dim_customers": 0, "dim_products": 0, "dim_locations": 0, "fact_orders": 0,
        }

    def test_malformed_source_raises(self, source_frames):
        source_frames["orderdetails"] = source_frames["orderdetails"].drop("priceEach")

        with pytest.raises(SchemaMismatch) as exc_info:
            transform_sources(source_frames)

        assert exc_info.value.entity == "orderdetails"
        assert exc_info.value.details["violations"][0]["column"] == "priceEach"

    def test_missing_entity_raises(self, source_frames):
        del source_frames["productlines"]

        with pytest.raises(SchemaMismatch, match="productlines"):
            transform_sources(source_frames)

    def test_all_bad_entities_reported_together(self, source_frames):
        source_frames["orders"] = source_frames["orders"].drop("orderDate")
        source_frames["products"] = pl.concat([source_frames["products"]] * 2)

        with pytest.raises(SchemaMismatch) as exc_info:
            transform_sources(source_frames)

        assert exc_info.value.entity == "products, orders"
