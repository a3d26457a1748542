"""Spark session management for the basket pipeline"""

from pyspark.sql import SparkSession
from pyspark.conf import SparkConf
from pyspark import StorageLevel
from src.utils.config import settings
from src.utils.logger import logger
from typing import Optional, Dict, Any

class SparkManager:
    """Manage Spark session lifecycle"""

    _instance: Optional[SparkSession] = None

    @classmethod
    def get_session(cls, app_name: Optional[str] = None,
                    config_overrides: Optional[Dict[str, Any]] = None) -> SparkSession:
        """Get or create the shared Spark session"""
        if cls._instance is None:
            logger.info("Creating new Spark session")

            conf = SparkConf()
            base_config = [
                ("spark.app.name", app_name or settings.spark_app_name),
                ("spark.master", "local[*]"),

                # Memory
                ("spark.driver.memory", settings.spark_driver_memory),
                ("spark.executor.memory", settings.spark_executor_memory),
                ("spark.driver.maxResultSize", settings.spark_max_result_size),
                ("spark.memory.fraction", "0.8"),

                # Adaptive Query Execution
                ("spark.sql.adaptive.enabled", "true"),
                ("spark.sql.adaptive.coalescePartitions.enabled", "true"),
                ("spark.sql.adaptive.skewJoin.enabled", "true"),

                # Store table is collected to pandas for clustering
                ("spark.sql.execution.arrow.pyspark.enabled", "true"),
                ("spark.sql.shuffle.partitions", "200"),
                ("spark.sql.files.maxPartitionBytes", "134217728"),  # 128MB
                ("spark.serializer", "org.apache.spark.serializer.KryoSerializer"),

                # Store and ZIP tables are broadcast in joins (10MB)
                ("spark.sql.autoBroadcastJoinThreshold", "10485760"),

                ("spark.sql.parquet.compression.codec", "snappy"),
                ("spark.io.compression.codec", "lz4"),
            ]
            conf.setAll(base_config)

            if config_overrides:
                for key, value in config_overrides.items():
                    conf.set(key, str(value))

            cls._instance = SparkSession.builder.config(conf=conf).getOrCreate()
            cls._instance.sparkContext.setLogLevel(settings.spark_log_level or "WARN")

            logger.success(f"Spark session created: {conf.get('spark.app.name')}")
            logger.debug(f"Spark UI available at: {cls._instance.sparkContext.uiWebUrl}")

        return cls._instance

    @classmethod
    def get_storage_level(cls, level: str = "MEMORY_AND_DISK") -> StorageLevel:
        """Get appropriate storage level"""
        levels = {
            "MEMORY_ONLY": StorageLevel.MEMORY_ONLY,
            "MEMORY_AND_DISK": StorageLevel.MEMORY_AND_DISK,
            "MEMORY_AND_DISK_2": StorageLevel.MEMORY_AND_DISK_2,
            "DISK_ONLY": StorageLevel.DISK_ONLY,
        }
        return levels.get(level, StorageLevel.MEMORY_AND_DISK)

    @classmethod
    def optimize_shuffle_partitions(cls, row_count: int) -> int:
        """Pick a shuffle partition count for the given number of transaction lines"""
        # Roughly 100 bytes per line, 128MB per partition
        size_mb = row_count * 100 / (1024 * 1024)
        optimal_partitions = max(1, int(size_mb / 128))

        return min(max(optimal_partitions, 20), 1000)

    @classmethod
    def stop_session(cls):
        """Stop Spark session and cleanup"""
        if cls._instance:
            logger.info("Stopping Spark session")
            try:
                cls._instance.catalog.clearCache()
                cls._instance.stop()
                cls._instance = None
                logger.success("Spark session stopped successfully")
            except Exception as e:
                logger.error(f"Error stopping Spark session: {e}")
