"""Configuration management module"""

import os
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Settings(BaseSettings):
    """Application settings"""

    # Environment
    env: str = os.getenv("ENV", "development")
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Paths
    project_root: Path = Path(__file__).parent.parent.parent
    data_path_raw: Path = project_root / "data" / "raw"
    data_path_processed: Path = project_root / "data" / "processed"

    # Input files (headerless, positional)
    departments_file: str = os.getenv("DEPARTMENTS_FILE", "deptinfo.csv")
    skus_file: str = os.getenv("SKUS_FILE", "skuinfo.csv")
    sku_store_prices_file: str = os.getenv("SKU_STORE_PRICES_FILE", "skstinfo.csv")
    stores_file: str = os.getenv("STORES_FILE", "strinfo.csv")
    transactions_file: str = os.getenv("TRANSACTIONS_FILE", "trnsact.csv")
    zip_coordinates_file: str = os.getenv("ZIP_COORDINATES_FILE", "zip_codes.csv")

    csv_delimiter: str = os.getenv("CSV_DELIMITER", ",")
    sale_date_format: str = os.getenv("SALE_DATE_FORMAT", "yyyy-MM-dd")
    zip_has_header: bool = os.getenv("ZIP_HAS_HEADER", "true").lower() == "true"

    # Spark
    spark_app_name: str = "StoreBasketAnalytics"
    spark_driver_memory: str = os.getenv("SPARK_DRIVER_MEMORY", "4g")
    spark_executor_memory: str = os.getenv("SPARK_EXECUTOR_MEMORY", "4g")
    spark_max_result_size: str = os.getenv("SPARK_MAX_RESULT_SIZE", "2g")
    spark_log_level: str = os.getenv("SPARK_LOG_LEVEL", "WARN")

    # Monitoring
    enable_metrics: bool = os.getenv("ENABLE_METRICS", "false").lower() == "true"
    metrics_port: int = int(os.getenv("METRICS_PORT", "8000"))
    enable_profiling: bool = os.getenv("ENABLE_PROFILING", "false").lower() == "true"

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is uppercase and valid"""
        v = v.upper()
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v not in valid_levels:
            return "INFO"
        return v

    class Config:
        case_sensitive = False


class AnalyticsConfig(BaseSettings):
    """Tunable parameters for store selection, filtering and rule mining"""

    # Store selection
    n_store_clusters: int = 10
    kmedoids_method: str = "pam"
    kmedoids_max_iter: int = 100
    random_state: int = 42

    # SKU filtering
    revenue_threshold: float = 2000.0

    # Basket construction
    transaction_key: List[str] = ["store_id", "sale_date", "register_id", "transaction_num"]
    basket_round_trip: bool = False

    # Rule mining
    min_support: float = 0.0001
    min_confidence: float = 0.1
    max_rule_length: int = 4
    top_n_rules: int = 100
    report_top_n: int = 10
    fpgrowth_num_partitions: Optional[int] = None

    # Execution
    cache_enabled: bool = True

    # Quality thresholds
    min_rows_threshold: int = 1
    max_duplicate_rate: float = 0.05

    @field_validator("n_store_clusters", "kmedoids_max_iter", "top_n_rules", "report_top_n")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("kmedoids_method")
    @classmethod
    def validate_kmedoids_method(cls, v: str) -> str:
        v = v.lower()
        if v not in ("pam", "fasterpam"):
            raise ValueError(f"Unsupported k-medoids method: {v}")
        return v

    @field_validator("min_support", "min_confidence")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("must be in (0, 1]")
        return v

    @field_validator("max_rule_length")
    @classmethod
    def validate_rule_length(cls, v: int) -> int:
        # A rule needs at least one antecedent and one consequent item
        if v < 2:
            raise ValueError("max_rule_length must be at least 2")
        return v

    @field_validator("transaction_key")
    @classmethod
    def validate_transaction_key(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("transaction_key must name at least one column")
        if len(set(v)) != len(v):
            raise ValueError(f"transaction_key has duplicate columns: {v}")
        return v

    class Config:
        case_sensitive = False
        # Command line overrides are assigned after construction
        validate_assignment = True

# Create global settings instances
settings = Settings()
analytics_config = AnalyticsConfig()
