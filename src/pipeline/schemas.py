"""Data schemas for the retail store/SKU/transaction tables"""

from typing import List
from pyspark.sql.types import (
    ArrayType,
    DateType,
    DoubleType,
    IntegerType,
    LongType,
    StringType,
    StructField,
    StructType,
)

# Transaction file positions 9 and 14 carry no usable data
DROPPED_TRANSACTION_COLUMNS = ["unused_9", "unused_14"]

class RetailSchema:
    """Positional schemas for the raw input files and derived tables.

    The raw files carry no header, so each schema lists columns in file
    order. Rows with fewer fields than the schema get nulls for the missing
    fields, and any trailing fields past the schema are ignored.
    """

    @staticmethod
    def department_schema() -> StructType:
        return StructType([
            StructField("dept_id", IntegerType(), True),
            StructField("dept_description", StringType(), True),
        ])

    @staticmethod
    def sku_schema() -> StructType:
        return StructType([
            StructField("sku_id", LongType(), True),
            StructField("department_id", IntegerType(), True),
            StructField("class_id", StringType(), True),
            StructField("upc", StringType(), True),
            StructField("style", StringType(), True),
            StructField("color", StringType(), True),
            StructField("size", StringType(), True),
            StructField("pack_size", IntegerType(), True),
            StructField("vendor", StringType(), True),
            StructField("brand", StringType(), True),
        ])

    @staticmethod
    def sku_store_price_schema() -> StructType:
        return StructType([
            StructField("sku_id", LongType(), True),
            StructField("store_id", IntegerType(), True),
            StructField("cost", DoubleType(), True),
            StructField("retail", DoubleType(), True),
        ])

    @staticmethod
    def store_schema() -> StructType:
        return StructType([
            StructField("store_id", IntegerType(), True),
            StructField("city", StringType(), True),
            StructField("state", StringType(), True),
            StructField("zip", StringType(), True),
        ])

    @staticmethod
    def zip_coordinate_schema() -> StructType:
        return StructType([
            StructField("zip", StringType(), True),
            StructField("latitude", DoubleType(), True),
            StructField("longitude", DoubleType(), True),
        ])

    @staticmethod
    def raw_transaction_schema() -> StructType:
        """All 14 positional columns of the transaction fact file"""
        return StructType([
            StructField("sku_id", LongType(), True),
            StructField("store_id", IntegerType(), True),
            StructField("register_id", IntegerType(), True),
            StructField("transaction_num", LongType(), True),
            StructField("interim_id", LongType(), True),
            StructField("sale_date", DateType(), True),
            StructField("sale_type", StringType(), True),
            StructField("quantity", IntegerType(), True),
            StructField("unused_9", StringType(), True),
            StructField("original_price", DoubleType(), True),
            StructField("amount", DoubleType(), True),
            StructField("sequence", LongType(), True),
            StructField("mic_code", StringType(), True),
            StructField("unused_14", StringType(), True),
        ])

    @staticmethod
    def transaction_columns() -> List[str]:
        """The 12 named transaction columns kept after ingestion"""
        return [
            field.name for field in RetailSchema.raw_transaction_schema().fields
            if field.name not in DROPPED_TRANSACTION_COLUMNS
        ]

    @staticmethod
    def basket_schema() -> StructType:
        """Schema of baskets re-read from a serialized basket file"""
        return StructType([
            StructField("items", ArrayType(StringType()), False),
            StructField("basket_size", IntegerType(), False),
        ])

    @staticmethod
    def rule_schema() -> StructType:
        """Schema of mined association rules"""
        return StructType([
            StructField("antecedent", ArrayType(StringType(), False), False),
            StructField("consequent", ArrayType(StringType(), False), False),
            StructField("confidence", DoubleType(), False),
            StructField("lift", DoubleType(), True),
            StructField("support", DoubleType(), False),
            StructField("rule_length", IntegerType(), False),
        ])

    @staticmethod
    def rule_report_columns() -> List[str]:
        return ["rule_text", "support", "confidence", "lift"]
