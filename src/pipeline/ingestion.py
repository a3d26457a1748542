"""Data ingestion for the headerless retail source files"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from pyspark.sql import DataFrame
from pyspark.sql import functions as F
from pyspark.sql.types import StructType
from src.utils.spark_manager import SparkManager
from src.utils.logger import logger
from src.utils.config import settings
from src.pipeline.schemas import RetailSchema, DROPPED_TRANSACTION_COLUMNS
import time

@dataclass(frozen=True)
class RawTables:
    """All input tables of one pipeline run"""
    departments: DataFrame
    skus: DataFrame
    sku_store_prices: DataFrame
    stores: DataFrame
    transactions: DataFrame
    zip_coordinates: DataFrame

class DataIngestion:
    """Read the positional source files into typed DataFrames"""

    def __init__(self, data_path: Optional[Path] = None):
        self.spark = SparkManager.get_session()
        self.schema = RetailSchema()
        self.data_path = Path(data_path) if data_path is not None else None

    @property
    def raw_path(self) -> Path:
        # Resolved lazily so settings overrides made after construction apply
        return self.data_path or Path(settings.data_path_raw)

    def read_all(self) -> RawTables:
        """Read every input table"""
        return RawTables(
            departments=self.read_departments(),
            skus=self.read_skus(),
            sku_store_prices=self.read_sku_store_prices(),
            stores=self.read_stores(),
            transactions=self.read_transactions(),
            zip_coordinates=self.read_zip_coordinates(),
        )

    def read_departments(self) -> DataFrame:
        return self._read_table(settings.departments_file, self.schema.department_schema())

    def read_skus(self) -> DataFrame:
        return self._read_table(settings.skus_file, self.schema.sku_schema())

    def read_sku_store_prices(self) -> DataFrame:
        return self._read_table(settings.sku_store_prices_file,
                                self.schema.sku_store_price_schema())

    def read_stores(self) -> DataFrame:
        return self._read_table(settings.stores_file, self.schema.store_schema())

    def read_zip_coordinates(self) -> DataFrame:
        return self._read_table(settings.zip_coordinates_file,
                                self.schema.zip_coordinate_schema(),
                                header=settings.zip_has_header)

    def read_transactions(self) -> DataFrame:
        """Read the transaction fact file and drop the two unusable columns"""
        df = self._read_table(settings.transactions_file,
                              self.schema.raw_transaction_schema(),
                              log_stats=False)
        df = df.drop(*DROPPED_TRANSACTION_COLUMNS)
        logger.info(f"Transaction columns: {', '.join(df.columns)}")
        return df

    def read_baskets(self, path: Path) -> DataFrame:
        """Parse a serialized basket file, one comma-delimited SKU list per line"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Basket file not found: {path}")

        logger.info(f"Reading serialized baskets from {path}")
        df = self.spark.read.text(str(path))
        schema = RetailSchema.basket_schema()

        baskets = df \
            .filter(F.trim(F.col("value")) != "") \
            .select(
                F.array_distinct(F.split(F.trim(F.col("value")), r"\s*,\s*")).alias("items")
            ) \
            .withColumn("items", F.filter("items", lambda item: item != "")) \
            .withColumn("basket_size", F.size("items")) \
            .filter(F.col("basket_size") > 0) \
            .select(*[F.col(field.name).cast(field.dataType) for field in schema.fields])

        logger.info(f"Loaded {baskets.count():,} baskets")
        return baskets

    def _resolve(self, filename: str) -> Path:
        filepath = self.raw_path / filename
        if not filepath.exists():
            # Accept a gzip-compressed copy of the same file
            compressed = filepath.with_name(filepath.name + ".gz")
            if compressed.exists():
                return compressed
            raise FileNotFoundError(f"Input file not found: {filepath}")
        return filepath

    def _read_table(self, filename: str, schema: StructType,
                    header: bool = False, log_stats: bool = True) -> DataFrame:
        """Read a positional CSV with a fixed schema"""
        start_time = time.time()
        filepath = self._resolve(filename)

        size_mb = filepath.stat().st_size / (1024 * 1024) if filepath.is_file() else 0.0
        logger.info(f"Reading {filepath.name} ({size_mb:.1f} MB)")

        read_options = {
            "header": str(header).lower(),
            "sep": settings.csv_delimiter,
            "mode": "PERMISSIVE",  # Ragged rows are padded or truncated, not rejected
            "ignoreLeadingWhiteSpace": "true",
            "ignoreTrailingWhiteSpace": "true",
            "nullValue": "",
            "dateFormat": settings.sale_date_format,
        }

        reader = self.spark.read
        for key, value in read_options.items():
            reader = reader.option(key, value)

        df = reader.schema(schema).csv(str(filepath))

        if log_stats:
            self._log_stats(df, filepath.name, start_time)

        return df

    def _log_stats(self, df: DataFrame, name: str, start_time: float):
        """Log row count and read duration"""
        row_count = df.count()
        duration = time.time() - start_time
        logger.info(f"Loaded {row_count:,} rows with {len(df.columns)} columns "
                    f"from {name} in {duration:.1f}s")

        if settings.debug:
            df.show(5, truncate=False)
