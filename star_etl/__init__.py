"""
Retail Star Schema ETL

Converts normalized OLTP retail data into a star schema published as
partitioned Parquet for serverless querying.
"""

__version__ = "1.0.0"
