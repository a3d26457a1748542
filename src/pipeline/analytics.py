"""Association rule mining and rule reporting"""

from pyspark.ml.fpm import FPGrowth, FPGrowthModel
from pyspark.sql import DataFrame
from pyspark.sql import functions as F
from pyspark.sql.functions import broadcast, col
from src.utils.spark_manager import SparkManager
from src.utils.logger import logger
from src.utils.config import analytics_config
from src.pipeline.schemas import RetailSchema
from typing import Dict, Optional
import time

class AnalyticsEngine:
    """Mine, rank and describe SKU association rules"""

    def __init__(self):
        self.config = analytics_config
        self.spark = SparkManager.get_session()

    def fit_fpgrowth(self, baskets: DataFrame) -> FPGrowthModel:
        """Fit FP-Growth on the basket items.

        Spark's FP-Growth has no maximum itemset length: itemsets and rules
        of every length above min_support are mined and the callers drop
        those longer than max_rule_length afterwards. At very low support on
        a full transaction history this is the most expensive stage; set
        fpgrowth_num_partitions to spread the conditional trees over more
        tasks.
        """
        fpgrowth = FPGrowth(
            itemsCol="items",
            minSupport=self.config.min_support,
            minConfidence=self.config.min_confidence
        )
        if self.config.fpgrowth_num_partitions:
            fpgrowth = fpgrowth.setNumPartitions(self.config.fpgrowth_num_partitions)
        return fpgrowth.fit(baskets.select("items"))

    def mine_association_rules(self, baskets: DataFrame,
                               model: Optional[FPGrowthModel] = None) -> DataFrame:
        """Mine every rule meeting the support, confidence and length thresholds"""
        start_time = time.time()
        logger.info(f"Mining rules (min_support={self.config.min_support}, "
                    f"min_confidence={self.config.min_confidence}, "
                    f"max_length={self.config.max_rule_length})")

        basket_count = baskets.count()
        if basket_count == 0:
            logger.warning("No baskets to mine; returning an empty rule set")
            return self.empty_rules()

        model = model or self.fit_fpgrowth(baskets)

        rules = model.associationRules \
            .withColumn("rule_length", (F.size("antecedent") + F.size("consequent")).cast("int")) \
            .filter(col("rule_length") <= self.config.max_rule_length) \
            .select("antecedent", "consequent", "confidence", "lift", "support", "rule_length")

        rule_count = rules.count()
        duration = time.time() - start_time
        logger.info(f"Mined {rule_count:,} rules from {basket_count:,} baskets in {duration:.1f}s")

        if rule_count == 0:
            logger.warning("No rules met the support/confidence thresholds")

        return rules

    def frequent_itemsets(self, baskets: DataFrame,
                          model: Optional[FPGrowthModel] = None) -> DataFrame:
        """Frequent itemsets with absolute and relative support"""
        basket_count = baskets.count()
        if basket_count == 0:
            return self.spark.createDataFrame([], "items array<string>, freq long, support double")

        model = model or self.fit_fpgrowth(baskets)
        return model.freqItemsets \
            .filter(F.size("items") <= self.config.max_rule_length) \
            .withColumn("items", F.array_sort("items")) \
            .withColumn("support", col("freq") / F.lit(basket_count))

    def rank_rules(self, rules: DataFrame, top_n: Optional[int] = None) -> DataFrame:
        """Order rules by lift (desc) and keep the top N.

        Ties on lift are broken by support, confidence and rule text so the
        ranking is the same on every run.
        """
        top_n = top_n or self.config.top_n_rules

        ranked = self.add_rule_text(rules) \
            .orderBy(F.desc("lift"), F.desc("support"), F.desc("confidence"), F.asc("rule_text")) \
            .limit(top_n)

        logger.info(f"Kept top {ranked.count():,} rules by lift (limit {top_n})")
        return ranked

    def add_rule_text(self, rules: DataFrame) -> DataFrame:
        """Add a readable "{a,b} => {c}" column"""
        return rules.withColumn(
            "rule_text",
            F.concat(
                F.lit("{"), F.concat_ws(",", self._sorted_items("antecedent")), F.lit("}"),
                F.lit(" => "),
                F.lit("{"), F.concat_ws(",", self._sorted_items("consequent")), F.lit("}")
            )
        )

    def format_rules(self, rules: DataFrame) -> DataFrame:
        """Select the report columns of ranked rules"""
        if "rule_text" not in rules.columns:
            rules = self.add_rule_text(rules)
        return rules.select(*RetailSchema.rule_report_columns())

    def describe_rule_items(self, rules: DataFrame, skus: DataFrame,
                            departments: DataFrame, prices: DataFrame,
                            store_ids: Optional[list] = None) -> DataFrame:
        """Catalog details for every SKU appearing in the given rules.

        Prices are averaged over the selected stores when store ids are given.
        """
        logger.info("Describing SKUs in ranked rules")

        rule_skus = rules \
            .select(F.explode(F.concat("antecedent", "consequent")).alias("item")) \
            .groupBy("item") \
            .agg(F.count("*").alias("rule_count")) \
            .withColumn("sku_id", col("item").cast("long")) \
            .drop("item")

        if store_ids is not None:
            prices = prices.filter(col("store_id").isin(list(store_ids)))

        avg_prices = prices.groupBy("sku_id").agg(
            F.round(F.avg("retail"), 2).alias("avg_retail"),
            F.round(F.avg("cost"), 2).alias("avg_cost"),
            F.countDistinct("store_id").alias("priced_stores")
        )

        department_names = departments.select(
            col("dept_id").alias("department_id"), "dept_description"
        ).dropDuplicates(["department_id"])

        return rule_skus \
            .join(skus.select("sku_id", "department_id", "brand", "vendor", "style",
                              "color", "size"), "sku_id", "left") \
            .join(broadcast(department_names), "department_id", "left") \
            .join(avg_prices, "sku_id", "left") \
            .select("sku_id", "rule_count", "department_id", "dept_description", "brand",
                    "vendor", "style", "color", "size", "avg_retail", "avg_cost",
                    "priced_stores") \
            .orderBy(F.desc("rule_count"), "sku_id")

    def rule_summary(self, rules: DataFrame) -> Dict[str, float]:
        """Aggregate statistics of a rule table"""
        stats = rules.agg(
            F.count("*").alias("rule_count"),
            F.max("lift").alias("max_lift"),
            F.avg("lift").alias("avg_lift"),
            F.avg("confidence").alias("avg_confidence"),
            F.avg("support").alias("avg_support")
        ).collect()[0]

        return {
            "rule_count": int(stats["rule_count"]),
            "max_lift": float(stats["max_lift"] or 0.0),
            "avg_lift": float(stats["avg_lift"] or 0.0),
            "avg_confidence": float(stats["avg_confidence"] or 0.0),
            "avg_support": float(stats["avg_support"] or 0.0),
        }

    def empty_rules(self) -> DataFrame:
        return self.spark.createDataFrame([], RetailSchema.rule_schema())

    def _sorted_items(self, column: str):
        # Items are SKU ids as strings; order them numerically
        return F.transform(
            F.array_sort(F.transform(column, lambda item: item.cast("long"))),
            lambda item: item.cast("string")
        )
