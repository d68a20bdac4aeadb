"""
Synthetic OLTP Source Generator
Seeds a classic retail source database (customers, products, product lines,
orders, order lines) for local runs of the star schema ETL.
"""

import argparse
import asyncio
import random
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

from faker import Faker

from star_etl.config import get_settings
from star_etl.config.logging import configure_logging
from star_etl.database.connection import create_source_engine
from star_etl.database.seed import create_source_schema, seed_source

fake = Faker()
random.seed(42)
Faker.seed(42)

PRODUCT_LINES = ["Classic Cars", "Motorcycles", "Planes", "Ships", "Trains", "Trucks and Buses", "Vintage Cars"]
STATUSES = ["Shipped", "Shipped", "Shipped", "Resolved", "Cancelled", "On Hold", "Disputed", "In Process"]


def money(low: float, high: float) -> Decimal:
    return Decimal(str(round(random.uniform(low, high), 2))).quantize(Decimal("0.01"))


def generate_product_lines():
    return [
        {"productLine": line, "textDescription": fake.paragraph(nb_sentences=2)}
        for line in PRODUCT_LINES
    ]


def generate_products(n):
    products = []
    for i in range(n):
        buy_price = money(10, 120)
        products.append({
            "productCode": f"S{random.choice([10, 12, 18, 24, 32, 50, 72])}_{1000 + i}",
            "productName": f"{fake.year()} {fake.word().title()} {fake.word().title()}",
            "productLine": random.choice(PRODUCT_LINES),
            "productScale": random.choice(["1:10", "1:12", "1:18", "1:24", "1:32", "1:50", "1:72"]),
            "productVendor": fake.company(),
            "productDescription": fake.sentence(nb_words=12),
            "quantityInStock": random.randint(0, 9000),
            "buyPrice": buy_price,
            "MSRP": (buy_price * Decimal("1.8")).quantize(Decimal("0.01")),
        })
    return products


def generate_customers(n):
    # A fixed pool of postal codes so several customers share a location
    locations = [(fake.postcode(), fake.city(), fake.state_abbr(), "USA") for _ in range(max(1, n // 3))]
    customers = []
    for i in range(n):
        postal_code, city, state, country = random.choice(locations)
        customers.append({
            "customerNumber": 100 + i,
            "customerName": fake.company(),
            "contactLastName": fake.last_name(),
            "contactFirstName": fake.first_name(),
            "phone": fake.phone_number(),
            "addressLine1": fake.street_address(),
            "addressLine2": None,
            "city": city,
            "state": state,
            "postalCode": postal_code if random.random() > 0.05 else None,
            "country": country,
            "creditLimit": money(0, 150000),
        })
    return customers


def generate_orders(n, customers, products, dangling_ratio):
    orders, details = [], []
    start = date(2003, 1, 1)
    for i in range(n):
        order_number = 10100 + i
        order_date = start + timedelta(days=random.randint(0, 880))
        orders.append({
            "orderNumber": order_number,
            "orderDate": order_date,
            "requiredDate": order_date + timedelta(days=7),
            "shippedDate": order_date + timedelta(days=random.randint(1, 6)),
            "status": random.choice(STATUSES),
            "customerNumber": random.choice(customers)["customerNumber"],
        })
        for line, product in enumerate(random.sample(products, k=random.randint(1, min(6, len(products)))), start=1):
            details.append({
                "orderNumber": order_number,
                "productCode": product["productCode"],
                "quantityOrdered": random.randint(20, 50),
                "priceEach": (product["MSRP"] * Decimal(str(random.uniform(0.8, 1.0)))).quantize(Decimal("0.01")),
                "orderLineNumber": line,
            })

    # Lines pointing at orders that do not exist, to exercise exclusion accounting
    for j in range(int(len(details) * dangling_ratio)):
        details.append({
            "orderNumber": 90000 + j,
            "productCode": random.choice(products)["productCode"],
            "quantityOrdered": random.randint(1, 10),
            "priceEach": money(10, 200),
            "orderLineNumber": 1,
        })
    return orders, details


async def seed(url: str, customers: int, products: int, orders: int, dangling_ratio: float) -> None:
    settings = get_settings().model_copy(deep=True)
    settings.source.url = url
    engine = create_source_engine(settings.source)

    customer_rows = generate_customers(customers)
    product_rows = generate_products(products)
    order_rows, detail_rows = generate_orders(orders, customer_rows, product_rows, dangling_ratio)

    try:
        await create_source_schema(engine, drop_existing=True)
        counts = await seed_source(engine, {
            "productlines": generate_product_lines(),
            "products": product_rows,
            "customers": customer_rows,
            "orders": order_rows,
            "orderdetails": detail_rows,
        })
    finally:
        await engine.dispose()

    for table, rows in counts.items():
        print(f"   {table}: {rows:,} rows")


def main():
    parser = argparse.ArgumentParser(description="Seed a synthetic retail OLTP source database")
    parser.add_argument("--url", default="sqlite+aiosqlite:///./data/source.db", help="Target database URL")
    parser.add_argument("--customers", type=int, default=120)
    parser.add_argument("--products", type=int, default=110)
    parser.add_argument("--orders", type=int, default=320)
    parser.add_argument("--dangling-ratio", type=float, default=0.0, help="Share of extra order lines with no order")
    args = parser.parse_args()

    configure_logging("WARNING")
    if args.url.startswith("sqlite") and ":///" in args.url:
        Path(args.url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)
    asyncio.run(seed(args.url, args.customers, args.products, args.orders, args.dangling_ratio))


if __name__ == "__main__":
    main()
