"""Test configuration and fixtures"""

import pytest
from pyspark.sql import SparkSession
from datetime import date
import os
import sys
from pathlib import Path

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep metrics and profiling off unless a test turns them on
os.environ["ENABLE_METRICS"] = "false"
os.environ["ENABLE_PROFILING"] = "false"

# Create a single Spark session for all tests
_spark = None

def get_spark():
    """Get or create Spark session"""
    global _spark
    if _spark is None:
        _spark = SparkSession.builder \
            .appName("test") \
            .master("local[2]") \
            .config("spark.sql.shuffle.partitions", "2") \
            .config("spark.driver.memory", "2g") \
            .config("spark.executor.memory", "2g") \
            .config("spark.sql.adaptive.enabled", "false") \
            .config("spark.ui.enabled", "false") \
            .config("spark.sql.legacy.timeParserPolicy", "CORRECTED") \
            .getOrCreate()
    return _spark

@pytest.fixture(scope="session")
def spark():
    """Create Spark session for tests"""
    yield get_spark()

@pytest.fixture(scope="function", autouse=True)
def shared_spark_session(spark):
    """Make every pipeline component reuse the test session"""
    from src.utils.spark_manager import SparkManager
    SparkManager._instance = spark
    yield spark
    SparkManager._instance = spark

@pytest.fixture
def analytics_settings(monkeypatch):
    """Restore the default analytics configuration after each test"""
    from src.utils.config import analytics_config
    monkeypatch.setattr(analytics_config, "n_store_clusters", 10)
    monkeypatch.setattr(analytics_config, "revenue_threshold", 2000.0)
    monkeypatch.setattr(analytics_config, "min_support", 0.0001)
    monkeypatch.setattr(analytics_config, "min_confidence", 0.1)
    monkeypatch.setattr(analytics_config, "max_rule_length", 4)
    monkeypatch.setattr(analytics_config, "top_n_rules", 100)
    monkeypatch.setattr(analytics_config, "basket_round_trip", False)
    monkeypatch.setattr(analytics_config, "transaction_key",
                        ["store_id", "sale_date", "register_id", "transaction_num"])
    return analytics_config

def transaction_row(sku_id, store_id, register_id, transaction_num, sale_date, amount,
                    sale_type="P", quantity=1):
    """One typed transaction line with the 12 kept columns"""
    return (sku_id, store_id, register_id, transaction_num, 0, sale_date, sale_type,
            quantity, amount, amount, 1, "000")

TRANSACTION_DDL = (
    "sku_id long, store_id int, register_id int, transaction_num long, interim_id long, "
    "sale_date date, sale_type string, quantity int, original_price double, amount double, "
    "sequence long, mic_code string"
)

@pytest.fixture
def make_transactions(spark):
    """Build a transaction DataFrame from transaction_row tuples"""
    def _make(rows):
        return spark.createDataFrame(rows, TRANSACTION_DDL)
    return _make

@pytest.fixture
def scenario_tables():
    """Three stores, five SKUs and ten lines forming four baskets at the central store.

    Stores 1 and 3 each get one extra line so they count as active stores for
    clustering. Store 2 sits between them and is the single medoid for k=1.
    SKUs 101 and 102 clear the 2000 revenue threshold at store 2, the other
    three SKUs do not.
    """
    day1 = date(2005, 8, 1)
    day2 = date(2005, 8, 2)

    departments = ["800,WOMENS SHOES", "801,COSMETICS"]
    skus = [
        "101,800,1,000101,ST1,RED,7,1,V1,BRANDA",
        "102,800,1,000102,ST2,BLUE,8,1,V1,BRANDA",
        "103,801,2,000103,ST3,NONE,,1,V2,BRANDB",
        "104,801,2,000104,ST4,NONE,,1,V2,BRANDB",
        "105,801,2,000105,ST5,NONE,,1,V3,BRANDC",
        "0,801,2,000000,BAD,NONE,,1,V3,BRANDC",
    ]
    prices = [
        "101,2,500.0,1100.0",
        "102,2,400.0,900.0",
        "103,2,10.0,20.0",
    ]
    stores = [
        "1,WEST TOWN,AA,00100",
        "2,MIDDLE CITY,BB,00200",
        "3,EAST VILLE,CC,00300",
        "4,NO ZIP,DD,99999",
    ]
    zips = [
        "zip,latitude,longitude",
        "00100,0.0,0.0",
        "00200,1.0,1.0",
        "00300,3.0,3.0",
    ]

    def line(sku, store, register, trannum, day, amount):
        return f"{sku},{store},{register},{trannum},0,{day.isoformat()},P,1,x,{amount},{amount},1,000,y"

    transactions = [
        # Basket A: 101, 102, 103
        line(101, 2, 1, 1, day1, 1000.0),
        line(102, 2, 1, 1, day1, 800.0),
        line(103, 2, 1, 1, day1, 5.0),
        # Basket B: 101, 102 (101 twice)
        line(101, 2, 1, 2, day1, 600.0),
        line(101, 2, 1, 2, day1, 550.0),
        line(102, 2, 1, 2, day1, 700.0),
        # Basket C: 101, 104
        line(101, 2, 2, 1, day1, 500.0),
        line(104, 2, 2, 1, day1, 30.0),
        # Basket D: same transaction number as A on another day
        line(102, 2, 1, 1, day2, 600.0),
        line(105, 2, 1, 1, day2, 12.0),
        # Lines at the outer stores
        line(103, 1, 1, 9, day1, 50.0),
        line(104, 3, 1, 9, day1, 50.0),
        # Invalid SKU id
        line(0, 2, 1, 1, day1, 99.0),
    ]

    return {
        "deptinfo.csv": departments,
        "skuinfo.csv": skus,
        "skstinfo.csv": prices,
        "strinfo.csv": stores,
        "trnsact.csv": transactions,
        "zip_codes.csv": zips,
    }

@pytest.fixture
def raw_data_dir(tmp_path, scenario_tables):
    """Write the scenario tables as headerless CSV files"""
    raw_dir = tmp_path / "raw"
    raw_dir.mkdir()
    for name, lines in scenario_tables.items():
        (raw_dir / name).write_text("\n".join(lines) + "\n")
    return raw_dir

# Set up pytest to use our spark session
def pytest_configure(config):
    """Configure pytest with spark session"""
    get_spark()

def pytest_unconfigure(config):
    """Clean up spark session"""
    global _spark
    if _spark:
        _spark.stop()
        _spark = None
