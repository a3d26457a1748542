"""Unit tests for SparkManager"""

import pytest
from unittest.mock import Mock, patch
from pyspark import StorageLevel
from pyspark.sql import SparkSession
from src.utils.spark_manager import SparkManager

class TestSparkManager:
    """Test SparkManager functionality"""

    @pytest.fixture(autouse=True)
    def cleanup(self):
        """Start every test without a cached session"""
        SparkManager._instance = None
        yield
        SparkManager._instance = None

    @pytest.fixture
    def mock_spark(self):
        with patch("src.utils.spark_manager.SparkSession") as mock_cls:
            mock_session = Mock(spec=SparkSession)
            mock_session.sparkContext = Mock()
            mock_session.sparkContext.uiWebUrl = "http://localhost:4040"
            mock_cls.builder.config.return_value.getOrCreate.return_value = mock_session
            yield mock_cls, mock_session

    def test_get_session_creates_new_session(self, mock_spark):
        """Test that get_session creates a session when none exists"""
        mock_cls, mock_session = mock_spark

        session = SparkManager.get_session()

        assert session is mock_session
        assert SparkManager._instance is mock_session
        mock_session.sparkContext.setLogLevel.assert_called_once()

    def test_get_session_reuses_instance(self, mock_spark):
        mock_cls, mock_session = mock_spark

        first = SparkManager.get_session()
        second = SparkManager.get_session()

        assert first is second
        assert mock_cls.builder.config.call_count == 1

    def test_config_overrides_applied(self, mock_spark):
        """Test that overrides land in the SparkConf"""
        mock_cls, _ = mock_spark

        SparkManager.get_session(app_name="baskets",
                                 config_overrides={"spark.sql.shuffle.partitions": 8})

        conf = mock_cls.builder.config.call_args.kwargs["conf"]
        assert conf.get("spark.app.name") == "baskets"
        assert conf.get("spark.sql.shuffle.partitions") == "8"

    def test_stop_session(self):
        mock_session = Mock()
        SparkManager._instance = mock_session

        SparkManager.stop_session()

        mock_session.catalog.clearCache.assert_called_once()
        mock_session.stop.assert_called_once()
        assert SparkManager._instance is None

    def test_stop_without_session_is_noop(self):
        SparkManager.stop_session()
        assert SparkManager._instance is None

    def test_get_storage_level(self):
        assert SparkManager.get_storage_level() == StorageLevel.MEMORY_AND_DISK
        assert SparkManager.get_storage_level("DISK_ONLY") == StorageLevel.DISK_ONLY
        assert SparkManager.get_storage_level("UNKNOWN") == StorageLevel.MEMORY_AND_DISK

    @pytest.mark.parametrize("row_count,expected", [
        (0, 20),
        (1_000_000, 20),
        (100_000_000, 74),
        (10_000_000_000, 1000),
    ])
    def test_optimize_shuffle_partitions(self, row_count, expected):
        """Test partition count bounds for small and very large inputs"""
        assert SparkManager.optimize_shuffle_partitions(row_count) == expected
