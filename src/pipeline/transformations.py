"""Cleaning, revenue filtering and basket construction"""

from pathlib import Path
from pyspark.sql import DataFrame
from pyspark.sql import functions as F
from pyspark.sql.functions import col, broadcast
from src.utils.logger import logger
from src.utils.config import analytics_config
from typing import List, Optional
import time

class DataTransformer:
    """Turn raw tables into the store, SKU and basket inputs of rule mining"""

    def __init__(self):
        self.config = analytics_config

    def clean_skus(self, df: DataFrame) -> DataFrame:
        """Drop SKUs with a missing or zero id"""
        initial_count = df.count()
        df = df.filter(col("sku_id").isNotNull() & (col("sku_id") != 0))
        self._log_dropped("SKU table", initial_count, df.count(), "invalid sku_id")
        return df

    def clean_transactions(self, df: DataFrame,
                           key_columns: Optional[List[str]] = None) -> DataFrame:
        """Drop lines with an invalid SKU or an incomplete transaction key"""
        start_time = time.time()
        key_columns = key_columns or self.config.transaction_key
        self._require_columns(df, key_columns)

        initial_count = df.count()

        condition = col("sku_id").isNotNull() & (col("sku_id") != 0)
        for key in key_columns:
            condition = condition & col(key).isNotNull()
        df = df.filter(condition)

        final_count = df.count()
        duration = time.time() - start_time
        self._log_dropped("Transactions", initial_count, final_count,
                          f"invalid sku_id or null key ({duration:.1f}s)")
        return df

    def attach_coordinates(self, stores: DataFrame, zip_coordinates: DataFrame,
                           transactions: DataFrame) -> DataFrame:
        """Resolve store ZIP codes to latitude/longitude.

        Only stores that appear in the transaction data are kept. Stores whose
        ZIP is missing from the reference table, or maps to null coordinates,
        are dropped.
        """
        logger.info("Attaching coordinates to stores")

        active_ids = transactions.select("store_id").distinct()
        active_stores = stores.join(active_ids, "store_id", "left_semi")
        active_count = active_stores.count()
        self._log_dropped("Stores", stores.count(), active_count, "no transactions")

        zips = zip_coordinates \
            .withColumn("zip", self._normalize_zip(col("zip"))) \
            .filter(col("zip").isNotNull()) \
            .dropDuplicates(["zip"])

        located = active_stores \
            .withColumn("zip", self._normalize_zip(col("zip"))) \
            .join(broadcast(zips), "zip", "inner") \
            .filter(col("latitude").isNotNull() & col("longitude").isNotNull()) \
            .select("store_id", "city", "state", "zip", "latitude", "longitude")

        self._log_dropped("Stores", active_count, located.count(), "unresolvable ZIP")
        return located

    def normalize_coordinates(self, stores: DataFrame) -> DataFrame:
        """Min-max normalize latitude and longitude per axis"""
        bounds = stores.agg(
            F.min("latitude").alias("min_lat"),
            F.max("latitude").alias("max_lat"),
            F.min("longitude").alias("min_lon"),
            F.max("longitude").alias("max_lon")
        ).collect()[0]

        return stores \
            .withColumn("normalized_lat",
                        self._min_max(col("latitude"), bounds["min_lat"], bounds["max_lat"])) \
            .withColumn("normalized_lon",
                        self._min_max(col("longitude"), bounds["min_lon"], bounds["max_lon"]))

    def calculate_sku_revenue(self, df: DataFrame) -> DataFrame:
        """Total revenue per SKU across all given lines"""
        return df.groupBy("sku_id").agg(
            F.sum("amount").alias("total_revenue"),
            F.count("*").alias("line_count")
        )

    def filter_by_sku_revenue(self, df: DataFrame,
                              threshold: Optional[float] = None) -> DataFrame:
        """Keep lines whose SKU's total revenue is strictly above the threshold.

        Revenue is summed over every line passed in, so for the pipeline it is
        global across the selected stores, not per store.
        """
        start_time = time.time()
        threshold = self.config.revenue_threshold if threshold is None else threshold
        logger.info(f"Filtering SKUs with total revenue > {threshold:,.2f}")

        revenue = self.calculate_sku_revenue(df)
        # A null sum (all amounts null) never passes
        retained_skus = revenue.filter(col("total_revenue") > threshold).select("sku_id")

        total_skus = revenue.count()
        kept_skus = retained_skus.count()
        logger.info(f"SKUs above revenue threshold: {kept_skus:,} of {total_skus:,} "
                    f"({total_skus - kept_skus:,} dropped)")

        initial_count = df.count()
        filtered = df.join(broadcast(retained_skus), "sku_id", "left_semi")

        duration = time.time() - start_time
        self._log_dropped("Transactions", initial_count, filtered.count(),
                          f"low-revenue SKU ({duration:.1f}s)")
        return filtered

    def build_baskets(self, df: DataFrame,
                      key_columns: Optional[List[str]] = None) -> DataFrame:
        """Collapse transaction lines into one basket per transaction key.

        Items are the distinct SKU ids of the group, sorted numerically and
        cast to strings for the rule miner.
        """
        start_time = time.time()
        key_columns = key_columns or self.config.transaction_key
        self._require_columns(df, key_columns)
        logger.info(f"Building baskets keyed by ({', '.join(key_columns)})")

        baskets = df \
            .groupBy(*key_columns) \
            .agg(F.array_sort(F.collect_set("sku_id")).alias("sku_ids")) \
            .withColumn("items", F.transform("sku_ids", lambda sku: sku.cast("string"))) \
            .drop("sku_ids") \
            .withColumn("basket_size", F.size("items")) \
            .filter(col("basket_size") > 0)

        basket_count = baskets.count()
        duration = time.time() - start_time
        logger.info(f"Built {basket_count:,} baskets in {duration:.1f}s")

        if basket_count == 0:
            logger.warning("No baskets built; rule mining will produce no rules")

        return baskets

    def serialize_baskets(self, baskets: DataFrame, path: Path) -> Path:
        """Write baskets as text, one comma-delimited SKU list per line"""
        path = Path(path)
        logger.info(f"Serializing baskets to {path}")

        baskets \
            .select(F.concat_ws(",", "items").alias("value")) \
            .orderBy("value") \
            .coalesce(1) \
            .write \
            .mode("overwrite") \
            .text(str(path))

        return path

    def _normalize_zip(self, zip_col):
        """First five digits of a ZIP, left-padded with zeros"""
        digits = F.regexp_replace(F.trim(zip_col.cast("string")), r"[^0-9].*$", "")
        return F.when(F.length(digits) == 0, F.lit(None)) \
            .otherwise(F.lpad(F.substring(digits, 1, 5), 5, "0"))

    def _min_max(self, value_col, lower, upper):
        if lower is None or upper is None or upper == lower:
            return F.lit(0.0)
        return (value_col - F.lit(lower)) / F.lit(upper - lower)

    def _require_columns(self, df: DataFrame, columns: List[str]):
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise ValueError(f"Unknown transaction key columns: {missing}")

    def _log_dropped(self, table: str, before: int, after: int, reason: str):
        dropped = before - after
        if dropped > 0:
            logger.info(f"{table}: dropped {dropped:,} of {before:,} rows ({reason}), "
                        f"{after:,} remain")
        else:
            logger.debug(f"{table}: no rows dropped ({reason}), {after:,} rows")
