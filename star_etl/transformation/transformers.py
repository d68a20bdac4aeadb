"""
Star Schema Transformer

Pure transformation from the five normalized source row sets to the four
star schema tables. No I/O happens here: the engine validates its inputs,
derives the dimensions and the fact table as polars lazy queries, runs them
together and validates the outputs.

Join rules:
- dim_products keeps every product; a missing product line leaves a null description
- fact_orders is an inner join chain over orders, products and customers; lines that
  cannot be resolved are excluded, counted and reported as referential gaps
- dim_locations keeps the first (city, state, country) seen for a postal code in
  source order and reports postal codes with conflicting tuples
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import polars as pl
import structlog

from star_etl.exceptions import SchemaMismatch
from star_etl.schema.models import (
    AMOUNT,
    DIM_CUSTOMERS,
    DIM_LOCATIONS,
    DIM_PRODUCTS,
    FACT_ORDERS,
    SOURCE_SCHEMAS,
    TARGET_SCHEMAS,
)
from star_etl.schema.validators import ReferentialGap, Violation, create_validator

logger = structlog.get_logger(__name__)

# Reason an order line is excluded from fact_orders, with the entity it failed to resolve
SKIP_REASONS = {
    "order_not_found": ("orders", "orderNumber"),
    "product_not_found": ("products", "productCode"),
    "customer_not_found": ("customers", "customerNumber"),
    "missing_postal_code": ("customers", "customerNumber"),
}


@dataclass(frozen=True)
class LocationConflict:
    """A postal code shared by customers that disagree on city, state or country"""
    postal_code: str
    kept: Dict[str, Optional[str]]
    variants: List[Dict[str, Optional[str]]]

    def to_dict(self) -> Dict[str, Any]:
        return {"postal_code": self.postal_code, "kept": self.kept, "variants": self.variants}


@dataclass
class TransformResult:
    """Result of one transformation run"""
    tables: Dict[str, pl.DataFrame]
    rows_skipped: Dict[str, int]
    referential_gaps: List[ReferentialGap] = field(default_factory=list)
    location_conflicts: List[LocationConflict] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0

    @property
    def rows_written(self) -> Dict[str, int]:
        return {name: df.height for name, df in self.tables.items()}

    def gap_counts(self) -> Dict[str, int]:
        """Referential gaps counted by '<entity>.<reason>'"""
        counts: Dict[str, int] = {}
        for gap in self.referential_gaps:
            label = f"{gap.entity}.{gap.reason}"
            counts[label] = counts.get(label, 0) + 1
        return dict(sorted(counts.items()))


class StarSchemaTransformer:
    """
    Builds dim_customers, dim_products, dim_locations and fact_orders.

    Example:
        transformer = StarSchemaTransformer()
        result = transformer.transform(sources)
        result.tables["fact_orders"]
    """

    def __init__(self, strict_locations: bool = False):
        self.strict_locations = strict_locations

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_sources(self, sources: Mapping[str, pl.DataFrame]) -> Dict[str, pl.DataFrame]:
        """
        Validate every source row set and conform it to its schema.

        Raises:
            SchemaMismatch: Listing every violation across all entities
        """
        conformed = {}
        violations: List[Violation] = []
        failed = []

        for name, schema in SOURCE_SCHEMAS.items():
            df = sources.get(name)
            if df is None:
                failed.append(name)
                violations.append(Violation(name, None, f"source entity '{name}' not provided"))
                continue

            errors = create_validator(name).validate(df).errors
            if errors:
                failed.append(name)
                violations.extend(errors)
                continue
            conformed[name] = schema.conform(df)

        if violations:
            raise SchemaMismatch(", ".join(failed), violations)
        return conformed

    def _validate_outputs(self, tables: Dict[str, pl.DataFrame]) -> None:
        violations = []
        for name, df in tables.items():
            violations.extend(create_validator(name).validate(df).errors)
        if violations:
            raise SchemaMismatch("star_schema", violations)

    # =========================================================================
    # DIMENSIONS
    # =========================================================================

    def build_dim_customers(self, customers: pl.LazyFrame) -> pl.LazyFrame:
        """One row per customer, renamed 1:1"""
        return customers.select([
            pl.col("customerNumber").alias("customer_number"),
            pl.col("customerName").alias("customer_name"),
            pl.col("contactFirstName").alias("contact_first_name"),
            pl.col("contactLastName").alias("contact_last_name"),
            pl.col("phone"),
            pl.col("addressLine1").alias("address_line1"),
            pl.col("addressLine2").alias("address_line2"),
            pl.col("city"),
            pl.col("state"),
            pl.col("postalCode").alias("postal_code"),
            pl.col("country"),
            pl.col("creditLimit").alias("credit_limit"),
        ]).sort("customer_number")

    def build_dim_products(self, products: pl.LazyFrame, product_lines: pl.LazyFrame) -> pl.LazyFrame:
        """One row per product, left-joined to its product line description"""
        lines = product_lines.select(["productLine", "textDescription"])
        return (
            products
            .join(lines, on="productLine", how="left")
            .select([
                pl.col("productCode").alias("product_code"),
                pl.col("productName").alias("product_name"),
                pl.col("productLine").alias("product_line"),
                pl.col("textDescription").alias("product_line_description"),
                pl.col("productScale").alias("product_scale"),
                pl.col("productVendor").alias("product_vendor"),
                pl.col("productDescription").alias("product_description"),
                pl.col("quantityInStock").alias("quantity_in_stock"),
                pl.col("buyPrice").alias("buy_price"),
                pl.col("MSRP").alias("msrp"),
            ])
            .sort("product_code")
        )

    def build_dim_locations(self, customers: pl.LazyFrame) -> pl.LazyFrame:
        """One row per non-null postal code; first tuple in source order wins"""
        return (
            customers
            .filter(pl.col("postalCode").is_not_null())
            .select(["postalCode", "city", "state", "country"])
            .unique(subset=["postalCode"], keep="first", maintain_order=True)
            .rename({"postalCode": "postal_code"})
            .sort("postal_code")
        )

    def find_location_conflicts(self, customers: pl.LazyFrame) -> pl.LazyFrame:
        """Postal codes with more than one distinct (city, state, country)"""
        return (
            customers
            .filter(pl.col("postalCode").is_not_null())
            .group_by("postalCode", maintain_order=True)
            .agg(pl.struct(["city", "state", "country"]).unique(maintain_order=True).alias("variants"))
            .filter(pl.col("variants").list.len() > 1)
            .sort("postalCode")
        )

    def _unresolved_product_lines(self, products: pl.LazyFrame, product_lines: pl.LazyFrame) -> pl.LazyFrame:
        return (
            products
            .filter(pl.col("productLine").is_not_null())
            .join(product_lines.select("productLine"), on="productLine", how="anti")
            .select(["productCode", "productLine"])
            .sort("productCode")
        )

    # =========================================================================
    # FACTS
    # =========================================================================

    def resolve_order_lines(
        self,
        details: pl.LazyFrame,
        orders: pl.LazyFrame,
        products: pl.LazyFrame,
        customers: pl.LazyFrame,
    ) -> pl.LazyFrame:
        """
        Look up every order line's order, product and customer.

        Lookups are left joins so no line is lost; ``_skip_reason`` is null for
        lines that resolve completely and names the first failed lookup otherwise.
        """
        order_lookup = orders.select([
            "orderNumber", "customerNumber", "orderDate", "status",
            pl.lit(True).alias("_order_found"),
        ])
        product_lookup = products.select(["productCode", pl.lit(True).alias("_product_found")])
        customer_lookup = customers.select([
            "customerNumber", "postalCode", pl.lit(True).alias("_customer_found"),
        ])

        skip_reason = (
            pl.when(pl.col("_order_found").is_null()).then(pl.lit("order_not_found"))
            .when(pl.col("_product_found").is_null()).then(pl.lit("product_not_found"))
            .when(pl.col("_customer_found").is_null()).then(pl.lit("customer_not_found"))
            .when(pl.col("postalCode").is_null()).then(pl.lit("missing_postal_code"))
            .otherwise(pl.lit(None, dtype=pl.Utf8))
        )

        return (
            details
            .join(order_lookup, on="orderNumber", how="left")
            .join(product_lookup, on="productCode", how="left")
            .join(customer_lookup, on="customerNumber", how="left")
            .with_columns(skip_reason.alias("_skip_reason"))
        )

    def build_fact_orders(self, resolved: pl.DataFrame) -> pl.DataFrame:
        """Project resolved order lines onto the fact table and compute the amount"""
        return (
            resolved
            .filter(pl.col("_skip_reason").is_null())
            .select([
                pl.col("orderNumber").alias("order_number"),
                pl.col("orderLineNumber").alias("order_line_number"),
                pl.col("productCode").alias("product_code"),
                pl.col("customerNumber").alias("customer_number"),
                pl.col("postalCode").alias("postal_code"),
                pl.col("orderDate").alias("order_date"),
                pl.col("orderDate").dt.year().cast(pl.Int32).alias("order_year"),
                pl.col("status"),
                pl.col("quantityOrdered").alias("quantity"),
                pl.col("priceEach").alias("unit_price"),
                # Decimal arithmetic, exact at the price scale; any Int64 quantity times a price fits
                (pl.col("quantityOrdered").cast(pl.Decimal(38, 0)) * pl.col("priceEach"))
                .cast(AMOUNT)
                .alias("order_amount"),
            ])
            .sort(["order_number", "product_code"])
        )

    def _skipped_line_gaps(self, resolved: pl.DataFrame) -> List[ReferentialGap]:
        skipped = resolved.filter(pl.col("_skip_reason").is_not_null()).sort(["orderNumber", "productCode"])
        gaps = []
        for row in skipped.iter_rows(named=True):
            reference, column = SKIP_REASONS[row["_skip_reason"]]
            gaps.append(ReferentialGap(
                entity="orderdetails",
                key=(row["orderNumber"], row["productCode"]),
                reference=reference,
                reference_key=row[column],
                reason=row["_skip_reason"],
            ))
        return gaps

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def transform(self, sources: Mapping[str, pl.DataFrame]) -> TransformResult:
        """
        Transform the source row sets into the star schema.

        Args:
            sources: customers, products, productlines, orders and orderdetails

        Returns:
            TransformResult with the four tables and exclusion accounting

        Raises:
            SchemaMismatch: Malformed input (or conflicting locations in strict mode)
        """
        started_at = datetime.utcnow()
        frames = self.validate_sources(sources)
        logger.info(
            "Starting star schema transformation",
            **{f"{name}_rows": df.height for name, df in frames.items()},
        )

        customers = frames["customers"].lazy()
        products = frames["products"].lazy()
        product_lines = frames["productlines"].lazy()
        orders = frames["orders"].lazy()
        details = frames["orderdetails"].lazy()

        # Independent queries, executed in parallel by polars
        dim_customers, dim_products, dim_locations, conflicts, unresolved_lines, resolved = pl.collect_all([
            self.build_dim_customers(customers),
            self.build_dim_products(products, product_lines),
            self.build_dim_locations(customers),
            self.find_location_conflicts(customers),
            self._unresolved_product_lines(products, product_lines),
            self.resolve_order_lines(details, orders, products, customers),
        ])

        location_conflicts = [
            LocationConflict(
                postal_code=row["postalCode"],
                kept=row["variants"][0],
                variants=row["variants"],
            )
            for row in conflicts.iter_rows(named=True)
        ]
        if location_conflicts:
            logger.warning(
                "Customers disagree on postal code locations",
                conflicts=len(location_conflicts),
                postal_codes=[c.postal_code for c in location_conflicts[:10]],
            )
            if self.strict_locations:
                raise SchemaMismatch("customers", [
                    Violation(
                        "customers", c.postal_code,
                        f"postal code {c.postal_code!r} maps to {len(c.variants)} locations",
                        column="postalCode",
                    )
                    for c in location_conflicts
                ])

        fact_orders = self.build_fact_orders(resolved)
        referential_gaps = [
            ReferentialGap(
                entity="products",
                key=row["productCode"],
                reference="productlines",
                reference_key=row["productLine"],
                reason="product_line_not_found",
            )
            for row in unresolved_lines.iter_rows(named=True)
        ]
        line_gaps = self._skipped_line_gaps(resolved)
        referential_gaps.extend(line_gaps)

        if line_gaps:
            logger.warning(
                "Order lines excluded from fact_orders",
                skipped=len(line_gaps),
                total=resolved.height,
            )

        tables = {
            DIM_CUSTOMERS.name: dim_customers,
            DIM_PRODUCTS.name: dim_products,
            DIM_LOCATIONS.name: dim_locations,
            FACT_ORDERS.name: fact_orders,
        }
        tables = {name: TARGET_SCHEMAS[name].conform(df) for name, df in tables.items()}
        self._validate_outputs(tables)

        completed_at = datetime.utcnow()
        result = TransformResult(
            tables=tables,
            rows_skipped={name: 0 for name in tables} | {FACT_ORDERS.name: len(line_gaps)},
            referential_gaps=referential_gaps,
            location_conflicts=location_conflicts,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )

        logger.info(
            "Star schema transformation complete",
            rows_written=result.rows_written,
            rows_skipped=result.rows_skipped,
            duration_seconds=result.duration_seconds,
        )
        return result


def transform_sources(
    sources: Mapping[str, pl.DataFrame],
    strict_locations: bool = False,
) -> TransformResult:
    """Convenience function for a one-off transformation"""
    return StarSchemaTransformer(strict_locations=strict_locations).transform(sources)
