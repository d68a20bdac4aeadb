"""
Schema Model - Source and Star Schema Tables

Typed definitions of the normalized OLTP source entities and of the
denormalized star schema produced from them:

Source Entities (read-only, classic OLTP naming):
- customers, products, productlines, orders, orderdetails

Dimension Tables:
- dim_customers: one row per customer
- dim_products: one row per product, denormalized with its product line
- dim_locations: one row per postal code

Fact Tables:
- fact_orders: one row per order line with quantity, unit price and amount
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import polars as pl

MONEY = pl.Decimal(10, 2)
AMOUNT = pl.Decimal(38, 2)


@dataclass(frozen=True)
class ColumnSpec:
    """A single typed column"""
    name: str
    dtype: pl.DataType
    nullable: bool = True


@dataclass(frozen=True)
class TableSchema:
    """Field set, types and key of a source or target table"""
    name: str
    columns: Tuple[ColumnSpec, ...]
    primary_key: Tuple[str, ...]
    description: str = ""
    partition_by: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def polars_schema(self) -> Dict[str, pl.DataType]:
        return {c.name: c.dtype for c in self.columns}

    @property
    def required(self) -> List[str]:
        """Columns that must never be null (key columns included)"""
        return [c.name for c in self.columns if not c.nullable or c.name in self.primary_key]

    def column(self, name: str) -> ColumnSpec:
        for c in self.columns:
            if c.name == name:
                return c
        raise KeyError(f"{self.name} has no column '{name}'")

    def frame(self, rows: Iterable[Mapping[str, Any]]) -> pl.DataFrame:
        """Build a DataFrame with exactly this table's columns and types."""
        rows = [{name: row.get(name) for name in self.column_names} for row in rows]
        return pl.DataFrame(rows, schema=self.polars_schema)

    def conform(self, df: pl.DataFrame) -> pl.DataFrame:
        """Project a validated frame onto this schema, casting to the declared types."""
        return df.select([pl.col(c.name).cast(c.dtype) for c in self.columns])

    def empty(self) -> pl.DataFrame:
        return pl.DataFrame(schema=self.polars_schema)


def _table(name: str, key: Iterable[str], *columns: ColumnSpec, **kwargs) -> TableSchema:
    return TableSchema(name=name, columns=tuple(columns), primary_key=tuple(key), **kwargs)


# =============================================================================
# SOURCE ENTITIES
# =============================================================================

CUSTOMERS = _table(
    "customers",
    ["customerNumber"],
    ColumnSpec("customerNumber", pl.Int64, nullable=False),
    ColumnSpec("customerName", pl.Utf8, nullable=False),
    ColumnSpec("contactLastName", pl.Utf8),
    ColumnSpec("contactFirstName", pl.Utf8),
    ColumnSpec("phone", pl.Utf8),
    ColumnSpec("addressLine1", pl.Utf8),
    ColumnSpec("addressLine2", pl.Utf8),
    ColumnSpec("city", pl.Utf8),
    ColumnSpec("state", pl.Utf8),
    ColumnSpec("postalCode", pl.Utf8),
    ColumnSpec("country", pl.Utf8),
    ColumnSpec("creditLimit", MONEY),
    description="Customer identity, contact and address",
)

PRODUCTS = _table(
    "products",
    ["productCode"],
    ColumnSpec("productCode", pl.Utf8, nullable=False),
    ColumnSpec("productName", pl.Utf8, nullable=False),
    ColumnSpec("productLine", pl.Utf8),
    ColumnSpec("productScale", pl.Utf8),
    ColumnSpec("productVendor", pl.Utf8),
    ColumnSpec("productDescription", pl.Utf8),
    ColumnSpec("quantityInStock", pl.Int64),
    ColumnSpec("buyPrice", MONEY),
    ColumnSpec("MSRP", MONEY),
    description="Product catalog",
)

PRODUCT_LINES = _table(
    "productlines",
    ["productLine"],
    ColumnSpec("productLine", pl.Utf8, nullable=False),
    ColumnSpec("textDescription", pl.Utf8),
    description="Product line descriptions",
)

ORDERS = _table(
    "orders",
    ["orderNumber"],
    ColumnSpec("orderNumber", pl.Int64, nullable=False),
    ColumnSpec("orderDate", pl.Date, nullable=False),
    ColumnSpec("requiredDate", pl.Date),
    ColumnSpec("shippedDate", pl.Date),
    ColumnSpec("status", pl.Utf8),
    ColumnSpec("customerNumber", pl.Int64),
    description="Order headers",
)

ORDER_DETAILS = _table(
    "orderdetails",
    ["orderNumber", "productCode"],
    ColumnSpec("orderNumber", pl.Int64, nullable=False),
    ColumnSpec("productCode", pl.Utf8, nullable=False),
    ColumnSpec("quantityOrdered", pl.Int64, nullable=False),
    ColumnSpec("priceEach", MONEY, nullable=False),
    ColumnSpec("orderLineNumber", pl.Int64),
    description="Order lines",
)

SOURCE_SCHEMAS: Dict[str, TableSchema] = {
    s.name: s for s in (CUSTOMERS, PRODUCTS, PRODUCT_LINES, ORDERS, ORDER_DETAILS)
}
SOURCE_ENTITIES: Tuple[str, ...] = tuple(SOURCE_SCHEMAS)


# =============================================================================
# STAR SCHEMA
# =============================================================================

DIM_CUSTOMERS = _table(
    "dim_customers",
    ["customer_number"],
    ColumnSpec("customer_number", pl.Int64, nullable=False),
    ColumnSpec("customer_name", pl.Utf8, nullable=False),
    ColumnSpec("contact_first_name", pl.Utf8),
    ColumnSpec("contact_last_name", pl.Utf8),
    ColumnSpec("phone", pl.Utf8),
    ColumnSpec("address_line1", pl.Utf8),
    ColumnSpec("address_line2", pl.Utf8),
    ColumnSpec("city", pl.Utf8),
    ColumnSpec("state", pl.Utf8),
    ColumnSpec("postal_code", pl.Utf8),
    ColumnSpec("country", pl.Utf8),
    ColumnSpec("credit_limit", MONEY),
    description="Customer dimension",
)

DIM_PRODUCTS = _table(
    "dim_products",
    ["product_code"],
    ColumnSpec("product_code", pl.Utf8, nullable=False),
    ColumnSpec("product_name", pl.Utf8, nullable=False),
    ColumnSpec("product_line", pl.Utf8),
    ColumnSpec("product_line_description", pl.Utf8),
    ColumnSpec("product_scale", pl.Utf8),
    ColumnSpec("product_vendor", pl.Utf8),
    ColumnSpec("product_description", pl.Utf8),
    ColumnSpec("quantity_in_stock", pl.Int64),
    ColumnSpec("buy_price", MONEY),
    ColumnSpec("msrp", MONEY),
    description="Product dimension with product line description",
)

DIM_LOCATIONS = _table(
    "dim_locations",
    ["postal_code"],
    ColumnSpec("postal_code", pl.Utf8, nullable=False),
    ColumnSpec("city", pl.Utf8),
    ColumnSpec("state", pl.Utf8),
    ColumnSpec("country", pl.Utf8),
    description="Location dimension keyed by postal code",
)

FACT_ORDERS = _table(
    "fact_orders",
    ["order_number", "product_code"],
    ColumnSpec("order_number", pl.Int64, nullable=False),
    ColumnSpec("order_line_number", pl.Int64),
    ColumnSpec("product_code", pl.Utf8, nullable=False),
    ColumnSpec("customer_number", pl.Int64, nullable=False),
    ColumnSpec("postal_code", pl.Utf8, nullable=False),
    ColumnSpec("order_date", pl.Date, nullable=False),
    ColumnSpec("order_year", pl.Int32, nullable=False),
    ColumnSpec("status", pl.Utf8),
    ColumnSpec("quantity", pl.Int64, nullable=False),
    ColumnSpec("unit_price", MONEY, nullable=False),
    ColumnSpec("order_amount", AMOUNT, nullable=False),
    description="Order line facts",
    partition_by=("order_year",),
)

TARGET_SCHEMAS: Dict[str, TableSchema] = {
    s.name: s for s in (DIM_CUSTOMERS, DIM_PRODUCTS, DIM_LOCATIONS, FACT_ORDERS)
}
TARGET_TABLES: Tuple[str, ...] = tuple(TARGET_SCHEMAS)


def get_schema(name: str) -> TableSchema:
    """Look up a source or target schema by table name."""
    schema: Optional[TableSchema] = SOURCE_SCHEMAS.get(name) or TARGET_SCHEMAS.get(name)
    if schema is None:
        raise ValueError(f"Unknown table: {name}")
    return schema
