"""
Unit Tests - Schema Model and Validation
"""
from decimal import Decimal

import polars as pl
import pytest

from star_etl.schema.models import AMOUNT, MONEY, ORDER_DETAILS, get_schema
from star_etl.schema.validators import (
    SchemaValidator,
    ValidationSeverity,
    ValidationStatus,
    create_validator,
    dtype_compatible,
    validate,
)


class TestTableSchema:
    """Tests for TableSchema"""

    def test_frame_uses_declared_types(self, source_rows):
        df = get_schema("orderdetails").frame(source_rows["orderdetails"])

        assert df.columns == ORDER_DETAILS.column_names
        assert df.schema["priceEach"] == MONEY
        assert df.schema["quantityOrdered"] == pl.Int64

    def test_required_includes_key_columns(self):
        assert get_schema("orderdetails").required == [
            "orderNumber", "productCode", "quantityOrdered", "priceEach",
        ]

    def test_conform_drops_extra_columns(self, source_frames):
        df = source_frames["productlines"].with_columns(pl.lit("x").alias("htmlDescription"))

        result = get_schema("productlines").conform(df)

        assert result.columns == ["productLine", "textDescription"]

    def test_unknown_table(self):
        with pytest.raises(ValueError):
            get_schema("payments")


class TestDtypeCompatibility:
    """Tests for dtype_compatible"""

    def test_integer_widths_are_interchangeable(self):
        assert dtype_compatible(pl.Int64, pl.Int32)

    def test_integers_fit_decimals(self):
        assert dtype_compatible(MONEY, pl.Int64)

    def test_finer_decimal_scale_rejected(self):
        assert not dtype_compatible(MONEY, pl.Decimal(12, 4))
        assert dtype_compatible(AMOUNT, MONEY)

    def test_float_is_not_money(self):
        assert not dtype_compatible(MONEY, pl.Float64)

    def test_all_null_column_accepted(self):
        assert dtype_compatible(pl.Utf8, pl.Null)


class TestSchemaValidator:
    """Tests for SchemaValidator"""

    def test_valid_sources_pass(self, source_frames):
        for name, df in source_frames.items():
            result = create_validator(name).validate(df)
            assert result.status == ValidationStatus.PASSED, name
            assert result.violations == []

    def test_missing_column(self, source_frames):
        df = source_frames["customers"].drop("customerName")

        result = create_validator("customers").validate(df)

        assert not result.passed
        assert any(v.column == "customerName" and "missing column" in v.reason for v in result.errors)

    def test_type_mismatch(self, source_frames):
        df = source_frames["orderdetails"].with_columns(pl.col("quantityOrdered").cast(pl.Utf8))

        result = create_validator("orderdetails").validate(df)

        assert [v.column for v in result.errors] == ["quantityOrdered"]

    def test_values_must_fit_declared_precision(self):
        df = pl.DataFrame(
            {
                "orderNumber": [1, 2],
                "productCode": ["A", "A"],
                "quantityOrdered": [1, 1],
                "priceEach": [Decimal("123456789012.00"), Decimal("5.00")],
                "orderLineNumber": [1, 1],
            },
            schema_overrides={"priceEach": pl.Decimal(38, 2)},
        )

        result = create_validator("orderdetails").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert [(v.key, v.column) for v in result.errors] == [((1, "A"), "priceEach")]

    def test_wide_types_with_fitting_values_pass(self, source_frames):
        df = source_frames["orderdetails"].with_columns(pl.col("priceEach").cast(pl.Decimal(38, 2)))

        assert create_validator("orderdetails").validate(df).errors == []

    def test_integer_money_out_of_range(self, source_frames):
        df = source_frames["customers"].with_columns(
            pl.when(pl.col("customerNumber") == 112)
            .then(pl.lit(10**12))
            .otherwise(pl.lit(1000))
            .cast(pl.Int64)
            .alias("creditLimit")
        )

        result = create_validator("customers").validate(df)

        assert [(v.key, v.column) for v in result.errors] == [(112, "creditLimit")]

    def test_null_key(self, source_frames):
        df = source_frames["orders"].with_columns(
            pl.when(pl.col("orderNumber") == 10101).then(None).otherwise(pl.col("orderNumber")).alias("orderNumber")
        )

        result = create_validator("orders").validate(df)

        assert any(v.column == "orderNumber" for v in result.errors)

    def test_duplicate_composite_key(self, source_frames):
        details = source_frames["orderdetails"]
        df = pl.concat([details, details.head(1)])

        result = create_validator("orderdetails").validate(df)

        duplicates = [v for v in result.errors if "duplicate key" in v.reason]
        assert len(duplicates) == 1
        assert duplicates[0].key == (10100, "S10_1678")

    def test_negative_quantity_is_an_error(self, source_rows):
        rows = source_rows["orderdetails"]
        rows[0]["quantityOrdered"] = -5
        df = get_schema("orderdetails").frame(rows)

        result = create_validator("orderdetails").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.errors[0].key == (10100, "S10_1678")

    def test_negative_price_is_a_warning_on_products(self, source_rows):
        rows = source_rows["products"]
        rows[0]["buyPrice"] = Decimal("-1.00")
        df = get_schema("products").frame(rows)

        result = create_validator("products").validate(df)

        assert result.status == ValidationStatus.PARTIAL
        assert result.errors == []
        assert result.violations[0].severity == ValidationSeverity.WARNING

    def test_custom_checks_chain(self, source_frames):
        validator = (
            SchemaValidator(get_schema("customers"))
            .add_not_null_check("postalCode", severity=ValidationSeverity.WARNING)
        )

        result = validator.validate(source_frames["customers"])

        assert result.violations[0].key == 121
        assert result.passed


def test_validate_returns_violations(source_frames):
    assert validate("products", source_frames["products"]) == []

    violations = validate("products", source_frames["products"].drop("MSRP"))

    assert [v.to_dict()["column"] for v in violations] == ["MSRP"]
