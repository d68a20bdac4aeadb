"""
Test Suite Configuration
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List

import polars as pl
import pytest
import pytest_asyncio

from star_etl.config import Settings
from star_etl.database.connection import create_source_engine
from star_etl.database.seed import seed_source
from star_etl.loading.writer import SnapshotWriter
from star_etl.schema.models import get_schema


def sample_source_rows() -> Dict[str, List[Dict[str, Any]]]:
    """
    A small classic-retail source snapshot.

    Order lines 10100/10101 resolve completely; the others each fail one lookup:
    10102 -> unknown customer, 10103 -> customer without postal code,
    10104 -> unknown order, (10100, S99_0000) -> unknown product.
    """
    return {
        "productlines": [
            {"productLine": "Classic Cars", "textDescription": "Attention car enthusiasts"},
            {"productLine": "Motorcycles", "textDescription": "Our motorcycles are state of the art replicas"},
        ],
        "products": [
            {
                "productCode": "S10_1678", "productName": "1969 Harley Davidson Ultimate Chopper",
                "productLine": "Motorcycles", "productScale": "1:10", "productVendor": "Min Lin Diecast",
                "productDescription": "Official Harley Davidson logos", "quantityInStock": 7933,
                "buyPrice": Decimal("48.81"), "MSRP": Decimal("95.70"),
            },
            {
                "productCode": "S10_1949", "productName": "1952 Alpine Renault 1300",
                "productLine": "Classic Cars", "productScale": "1:10", "productVendor": "Classic Metal Creations",
                "productDescription": "Turnable front wheels", "quantityInStock": 7305,
                "buyPrice": Decimal("98.58"), "MSRP": Decimal("214.30"),
            },
            {
                "productCode": "S12_1099", "productName": "1968 Ford Mustang",
                "productLine": "Planes", "productScale": "1:12", "productVendor": "Autoart Studio Design",
                "productDescription": "Hood, doors and trunk all open", "quantityInStock": 68,
                "buyPrice": Decimal("95.34"), "MSRP": Decimal("194.57"),
            },
        ],
        "customers": [
            {
                "customerNumber": 103, "customerName": "Atelier graphique", "contactLastName": "Schmitt",
                "contactFirstName": "Carine", "phone": "40.32.2555", "addressLine1": "54, rue Royale",
                "addressLine2": None, "city": "Nantes", "state": None, "postalCode": "44000",
                "country": "France", "creditLimit": Decimal("21000.00"),
            },
            {
                "customerNumber": 112, "customerName": "Signal Gift Stores", "contactLastName": "King",
                "contactFirstName": "Jean", "phone": "7025551838", "addressLine1": "8489 Strong St.",
                "addressLine2": None, "city": "Las Vegas", "state": "NV", "postalCode": "83030",
                "country": "USA", "creditLimit": Decimal("71800.00"),
            },
            {
                "customerNumber": 114, "customerName": "Australian Collectors, Co.", "contactLastName": "Ferguson",
                "contactFirstName": "Peter", "phone": "03 9520 4555", "addressLine1": "636 St Kilda Road",
                "addressLine2": "Level 3", "city": "Melbourne", "state": "Victoria", "postalCode": "3004",
                "country": "Australia", "creditLimit": Decimal("117300.00"),
            },
            {
                "customerNumber": 119, "customerName": "La Rochelle Gifts", "contactLastName": "Labrune",
                "contactFirstName": "Janine", "phone": "40.67.8555", "addressLine1": "67, rue des Cinquante Otages",
                "addressLine2": None, "city": "Nantes", "state": None, "postalCode": "44000",
                "country": "France", "creditLimit": Decimal("118200.00"),
            },
            {
                "customerNumber": 121, "customerName": "Baane Mini Imports", "contactLastName": "Bergulfsen",
                "contactFirstName": "Jonas", "phone": "07-98 9555", "addressLine1": "Erling Skakkes gate 78",
                "addressLine2": None, "city": "Stavern", "state": None, "postalCode": None,
                "country": "Norway", "creditLimit": Decimal("81700.00"),
            },
        ],
        "orders": [
            {"orderNumber": 10100, "orderDate": date(2003, 1, 6), "requiredDate": date(2003, 1, 13),
             "shippedDate": date(2003, 1, 10), "status": "Shipped", "customerNumber": 103},
            {"orderNumber": 10101, "orderDate": date(2004, 1, 9), "requiredDate": date(2004, 1, 18),
             "shippedDate": date(2004, 1, 11), "status": "Shipped", "customerNumber": 112},
            {"orderNumber": 10102, "orderDate": date(2004, 1, 10), "requiredDate": date(2004, 1, 18),
             "shippedDate": None, "status": "In Process", "customerNumber": 999},
            {"orderNumber": 10103, "orderDate": date(2004, 1, 29), "requiredDate": date(2004, 2, 7),
             "shippedDate": date(2004, 2, 2), "status": "Shipped", "customerNumber": 121},
        ],
        "orderdetails": [
            {"orderNumber": 10100, "productCode": "S10_1678", "quantityOrdered": 30,
             "priceEach": Decimal("95.70"), "orderLineNumber": 1},
            {"orderNumber": 10100, "productCode": "S10_1949", "quantityOrdered": 50,
             "priceEach": Decimal("214.30"), "orderLineNumber": 2},
            {"orderNumber": 10100, "productCode": "S99_0000", "quantityOrdered": 1,
             "priceEach": Decimal("1.00"), "orderLineNumber": 3},
            {"orderNumber": 10101, "productCode": "S12_1099", "quantityOrdered": 25,
             "priceEach": Decimal("108.06"), "orderLineNumber": 1},
            {"orderNumber": 10101, "productCode": "S10_1678", "quantityOrdered": 3,
             "priceEach": Decimal("10.00"), "orderLineNumber": 2},
            {"orderNumber": 10102, "productCode": "S10_1678", "quantityOrdered": 10,
             "priceEach": Decimal("50.00"), "orderLineNumber": 1},
            {"orderNumber": 10103, "productCode": "S10_1949", "quantityOrdered": 1,
             "priceEach": Decimal("100.00"), "orderLineNumber": 1},
            {"orderNumber": 10104, "productCode": "S10_1678", "quantityOrdered": 2,
             "priceEach": Decimal("20.00"), "orderLineNumber": 1},
        ],
    }


def make_frames(rows: Dict[str, List[Dict[str, Any]]]) -> Dict[str, pl.DataFrame]:
    """Typed source DataFrames for the given rows"""
    return {name: get_schema(name).frame(entity_rows) for name, entity_rows in rows.items()}


@pytest.fixture
def source_rows() -> Dict[str, List[Dict[str, Any]]]:
    return sample_source_rows()


@pytest.fixture
def source_frames(source_rows) -> Dict[str, pl.DataFrame]:
    return make_frames(source_rows)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a temporary source database and output path"""
    settings = Settings()
    settings.app_env = "testing"
    settings.source.url = f"sqlite+aiosqlite:///{tmp_path / 'source.db'}"
    settings.source.query_timeout_seconds = 10
    settings.data_lake.output_path = str(tmp_path / "star_schema")
    settings.pipeline.retry_backoff_seconds = 0
    settings.pipeline.retry_backoff_max_seconds = 0
    return settings


@pytest.fixture
def writer(test_settings) -> SnapshotWriter:
    return SnapshotWriter(settings=test_settings)


async def seed_database(settings: Settings, rows: Dict[str, List[Dict[str, Any]]]) -> None:
    """Create and load the source tables in the configured database"""
    engine = create_source_engine(settings.source)
    try:
        await seed_source(engine, rows)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def seeded_source(test_settings, source_rows):
    """A sqlite source database loaded with the sample snapshot"""
    await seed_database(test_settings, source_rows)
    return test_settings
