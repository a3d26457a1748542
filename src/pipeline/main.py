"""Main pipeline orchestrator"""

import sys
import time
import json
import argparse
from dataclasses import dataclass
from pathlib import Path
from datetime import datetime
from typing import Optional, Dict, Any, Tuple
from pyspark.sql import DataFrame

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.append(str(project_root))

from src.utils.spark_manager import SparkManager
from src.utils.logger import logger
from src.utils.config import settings, analytics_config
from src.pipeline.ingestion import DataIngestion, RawTables
from src.pipeline.transformations import DataTransformer
from src.pipeline.store_selection import StoreSelector, StoreSelection
from src.pipeline.analytics import AnalyticsEngine
from src.quality.data_quality import DataQualityChecker
from src.utils.monitoring import MetricsCollector, PerformanceProfiler

@dataclass(frozen=True)
class PreparedData:
    """Cleaned inputs of store selection and basket building"""
    skus: DataFrame
    transactions: DataFrame
    stores: DataFrame

@dataclass(frozen=True)
class MiningResult:
    rules: DataFrame
    ranked_rules: DataFrame
    rule_table: DataFrame
    rule_items: DataFrame

class StoreBasketPipeline:
    """Store selection, SKU filtering, basket building and rule mining"""

    def __init__(self, config_overrides: Optional[Dict[str, Any]] = None,
                 data_path: Optional[Path] = None):
        self.config = config_overrides or {}
        self.spark = SparkManager.get_session(config_overrides=self.config)
        self.ingestion = DataIngestion(data_path)
        self.transformer = DataTransformer()
        self.selector = StoreSelector()
        self.analytics = AnalyticsEngine()
        self.quality_checker = DataQualityChecker()
        self.metrics = MetricsCollector() if settings.enable_metrics else None
        self.profiler = PerformanceProfiler()

        self.current_stage = "initialization"
        self.stage_timings: Dict[str, float] = {}
        self.row_counts: Dict[str, int] = {}
        self.outputs: Dict[str, DataFrame] = {}
        self._cached: list = []

    def run(self) -> Dict[str, Any]:
        """Run the complete pipeline"""
        pipeline_start = time.time()
        results = {
            "status": "started",
            "start_time": datetime.now().isoformat(),
        }

        logger.info("="*60)
        logger.info("Starting Store Basket Analytics Pipeline")
        logger.info("="*60)

        try:
            # Step 1: Read all source tables
            raw = self._execute_stage("ingestion", self.ingestion.read_all)

            # Step 2: Clean and geocode
            prepared = self._execute_stage("preparation", self._prepare_data, raw)

            # Step 3: k-medoids store selection
            selection, store_lines = self._execute_stage(
                "store_selection", self._select_stores, prepared)

            # Step 4: Global SKU revenue filter
            filtered_lines = self._execute_stage(
                "revenue_filter", self._filter_revenue, store_lines)

            # Step 5: One basket per transaction key
            baskets = self._execute_stage(
                "basket_construction", self._build_baskets, filtered_lines)

            # Step 6: Rule mining and ranking
            mining = self._execute_stage(
                "rule_mining", self._mine_rules, baskets, raw, selection)

            # Step 7: Quality checks
            quality_passed, quality_results = self._execute_stage(
                "quality_check", self._check_quality,
                filtered_lines, baskets, mining.ranked_rules)

            # Step 8: Save outputs
            self._execute_stage("save_results", self._save_results, selection, mining)

            total_duration = time.time() - pipeline_start
            rule_summary = self.analytics.rule_summary(mining.ranked_rules)

            results.update({
                "status": "completed",
                "end_time": datetime.now().isoformat(),
                "total_duration_seconds": total_duration,
                "medoid_store_ids": selection.medoid_store_ids,
                "clustering_loss": selection.loss,
                "row_counts": self.row_counts,
                "rules_mined": self.row_counts.get("rules_mined", 0),
                "rules_ranked": rule_summary["rule_count"],
                "rule_summary": rule_summary,
                "quality_check_passed": quality_passed,
                "quality_score": quality_results.get("quality_score", 0),
                "stage_timings": self.stage_timings,
                "profile": self.profiler.get_summary(),
                "parameters": self._parameters()
            })

            logger.success("="*60)
            logger.success(f"Pipeline completed successfully in {total_duration:.1f} seconds!")
            logger.success("="*60)

            self._show_summary(mining)
            self._generate_summary_report(results, quality_results)

            if self.metrics:
                self.metrics.update_data_quality_score(quality_results.get("quality_score", 0))
                self.metrics.record_pipeline_run(results)

            return results

        except Exception as e:
            logger.error(f"Pipeline failed at stage '{self.current_stage}': {e}")
            results.update({
                "status": "failed",
                "error": str(e),
                "failed_stage": self.current_stage,
                "error_type": type(e).__name__
            })

            if self.metrics:
                self.metrics.record_pipeline_failure(self.current_stage, str(e))

            raise
        finally:
            self._cleanup()

    def _execute_stage(self, stage_name: str, func: callable, *args, **kwargs) -> Any:
        """Execute a pipeline stage with timing and error handling"""
        self.current_stage = stage_name
        stage_start = time.time()

        logger.info(f"Starting stage: {stage_name}")

        try:
            result = self.profiler.profile_function(stage_name)(func)(*args, **kwargs)
            stage_duration = time.time() - stage_start
            self.stage_timings[stage_name] = stage_duration

            logger.success(f"Stage '{stage_name}' completed in {stage_duration:.1f}s")

            if self.metrics:
                self.metrics.record_stage_duration(stage_name, stage_duration)

            return result

        except Exception as e:
            stage_duration = time.time() - stage_start
            self.stage_timings[stage_name] = stage_duration
            logger.error(f"Stage '{stage_name}' failed after {stage_duration:.1f}s: {e}")
            raise

    def _prepare_data(self, raw: RawTables) -> PreparedData:
        """Clean SKUs and transactions, geocode and normalize stores"""
        self._track("raw_transactions", raw.transactions.count())

        skus = self.transformer.clean_skus(raw.skus)
        transactions = self.transformer.clean_transactions(raw.transactions)
        self._track("clean_transactions", transactions.count(), since="raw_transactions")

        stores = self.transformer.attach_coordinates(
            raw.stores, raw.zip_coordinates, transactions)
        stores = self.transformer.normalize_coordinates(stores)
        self._track("located_stores", stores.count())

        return PreparedData(skus=skus, transactions=transactions, stores=stores)

    def _select_stores(self, prepared: PreparedData) -> Tuple[StoreSelection, DataFrame]:
        selection = self.selector.select_stores(prepared.stores)
        lines = self.selector.restrict_transactions(prepared.transactions, selection)

        # The revenue filter reads these lines twice
        lines = self._optimize_and_cache(lines)
        line_count = lines.count()
        self._track("selected_store_transactions", line_count, since="clean_transactions")

        if line_count > 0:
            partitions = SparkManager.optimize_shuffle_partitions(line_count)
            self.spark.conf.set("spark.sql.shuffle.partitions", str(partitions))
            logger.info(f"Optimized shuffle partitions to: {partitions}")

        self.outputs["store_assignments"] = selection.assignments
        return selection, lines

    def _filter_revenue(self, lines: DataFrame) -> DataFrame:
        filtered = self.transformer.filter_by_sku_revenue(lines)
        self._track("revenue_filtered_transactions", filtered.count(),
                    since="selected_store_transactions")
        if self.row_counts["revenue_filtered_transactions"] == 0:
            logger.warning("No SKU exceeds the revenue threshold")
        return filtered

    def _build_baskets(self, lines: DataFrame) -> DataFrame:
        baskets = self.transformer.build_baskets(lines)

        if analytics_config.basket_round_trip:
            basket_file = self.transformer.serialize_baskets(
                baskets, Path(settings.data_path_processed) / "baskets")
            baskets = self.ingestion.read_baskets(basket_file)

        self._track("baskets", baskets.count())
        self.outputs["baskets"] = baskets
        return baskets

    def _mine_rules(self, baskets: DataFrame, raw: RawTables,
                    selection: StoreSelection) -> MiningResult:
        rules = self.analytics.mine_association_rules(baskets)
        self._track("rules_mined", rules.count())

        ranked = self.analytics.rank_rules(rules)
        rule_table = self.analytics.format_rules(ranked)
        rule_items = self.analytics.describe_rule_items(
            ranked, self.transformer.clean_skus(raw.skus), raw.departments,
            raw.sku_store_prices, store_ids=selection.medoid_store_ids)

        self.outputs.update({
            "rules": rules,
            "ranked_rules": ranked,
            "top_rules": rule_table,
            "rule_items": rule_items
        })
        return MiningResult(rules, ranked, rule_table, rule_items)

    def _check_quality(self, lines: DataFrame, baskets: DataFrame,
                       ranked_rules: DataFrame) -> Tuple[bool, Dict]:
        return self.quality_checker.run_all_checks(lines, baskets, ranked_rules)

    def _optimize_and_cache(self, df: DataFrame) -> DataFrame:
        """Persist a DataFrame that later stages read more than once"""
        if not analytics_config.cache_enabled:
            return df

        storage_level = SparkManager.get_storage_level("MEMORY_AND_DISK")
        df = df.persist(storage_level)
        self._cached.append(df)
        logger.info(f"Cached {df.count():,} rows with {storage_level}")
        return df

    def _track(self, name: str, count: int, since: Optional[str] = None):
        """Record a row count and, relative to an earlier count, the rows dropped"""
        self.row_counts[name] = count
        if since is not None and since in self.row_counts:
            dropped = self.row_counts[since] - count
            if self.metrics:
                self.metrics.record_rows_dropped(name, dropped)

    def _save_results(self, selection: StoreSelection, mining: MiningResult) -> None:
        """Write rule tables and diagnostics as single CSV files"""
        output_path = Path(settings.data_path_processed)
        output_path.mkdir(parents=True, exist_ok=True)

        self._save_dataframe(mining.rule_table, output_path / "top_rules")
        self._save_dataframe(mining.rule_table.limit(analytics_config.report_top_n),
                             output_path / "top_10_rules")
        self._save_dataframe(mining.rule_items, output_path / "rule_items")
        self._save_dataframe(selection.assignments.orderBy("cluster", "store_id"),
                             output_path / "store_assignments")

    def _save_dataframe(self, df: DataFrame, path: Path) -> None:
        logger.info(f"Saving {path.name}")
        df.coalesce(1) \
            .write \
            .mode("overwrite") \
            .option("header", "true") \
            .csv(str(path))

    def _show_summary(self, mining: MiningResult) -> None:
        """Display pipeline summary with key metrics"""
        logger.info("="*60)
        logger.info("PIPELINE SUMMARY")
        logger.info("="*60)

        for name, count in self.row_counts.items():
            logger.info(f"  - {name}: {count:,}")

        logger.info(f"Top {analytics_config.report_top_n} rules by lift:")
        mining.rule_table.show(analytics_config.report_top_n, truncate=False)

    def _generate_summary_report(self, pipeline_results: Dict[str, Any],
                                 quality_results: Dict) -> None:
        """Write summary_report.json, pipeline_results.json and the quality report"""
        output_path = Path(settings.data_path_processed)
        summary = {
            "execution_date": datetime.now().strftime("%Y-%m-%d"),
            "pipeline_duration_seconds": pipeline_results.get("total_duration_seconds", 0),
            "medoid_store_ids": pipeline_results.get("medoid_store_ids", []),
            "row_counts": pipeline_results.get("row_counts", {}),
            "rule_summary": pipeline_results.get("rule_summary", {}),
            "quality_check_passed": pipeline_results.get("quality_check_passed"),
            "quality_score": quality_results.get("quality_score", 0),
            "failed_checks": [
                {"name": check.get("name"), "message": check.get("message")}
                for check in quality_results.get("failed_checks", [])
            ],
            "parameters": pipeline_results.get("parameters", {})
        }

        try:
            summary_path = output_path / "summary_report.json"
            with open(summary_path, 'w') as f:
                json.dump(summary, f, indent=2)
            logger.info(f"Summary report saved to: {summary_path}")

            results_path = output_path / "pipeline_results.json"
            with open(results_path, 'w') as f:
                json.dump(pipeline_results, f, indent=2, default=str)
            logger.info(f"Pipeline results saved to: {results_path}")

            self.quality_checker.generate_quality_report(
                quality_results, output_path / "quality_report.txt")
        except OSError as e:
            logger.error(f"Failed to generate summary report: {e}")

    def _parameters(self) -> Dict[str, Any]:
        return {
            "n_store_clusters": analytics_config.n_store_clusters,
            "kmedoids_method": analytics_config.kmedoids_method,
            "random_state": analytics_config.random_state,
            "revenue_threshold": analytics_config.revenue_threshold,
            "transaction_key": list(analytics_config.transaction_key),
            "min_support": analytics_config.min_support,
            "min_confidence": analytics_config.min_confidence,
            "max_rule_length": analytics_config.max_rule_length,
            "top_n_rules": analytics_config.top_n_rules,
            "basket_round_trip": analytics_config.basket_round_trip
        }

    def _cleanup(self) -> None:
        """Release cached data"""
        try:
            for df in self._cached:
                df.unpersist()
            self._cached = []

            if settings.env == "test":
                SparkManager.stop_session()

        except Exception as e:
            logger.warning(f"Cleanup error: {e}")

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Store basket association rule pipeline")
    parser.add_argument("--data-dir", type=Path, help="Directory holding the raw input files")
    parser.add_argument("--output-dir", type=Path, help="Directory for pipeline outputs")
    parser.add_argument("--clusters", type=int, help="Number of medoid stores to select")
    parser.add_argument("--revenue-threshold", type=float, help="Minimum total SKU revenue")
    parser.add_argument("--min-support", type=float, help="Minimum rule support")
    parser.add_argument("--min-confidence", type=float, help="Minimum rule confidence")
    parser.add_argument("--max-rule-length", type=int, help="Maximum items per rule")
    parser.add_argument("--top-n", type=int, help="Number of ranked rules to keep")
    parser.add_argument("--round-trip", action="store_true",
                        help="Serialize baskets to text and re-read them before mining")
    parser.add_argument("--profile", action="store_true", help="Enable profiling")
    return parser.parse_args(argv)

def apply_overrides(args: argparse.Namespace) -> None:
    """Copy command line values onto the analytics configuration.

    Values are validated on a copy first, so an invalid flag raises
    ValueError and leaves the configuration untouched.
    """
    overrides = {
        "n_store_clusters": args.clusters,
        "revenue_threshold": args.revenue_threshold,
        "min_support": args.min_support,
        "min_confidence": args.min_confidence,
        "max_rule_length": args.max_rule_length,
        "top_n_rules": args.top_n,
    }
    overrides = {name: value for name, value in overrides.items() if value is not None}
    if args.round_trip:
        overrides["basket_round_trip"] = True

    candidate = analytics_config.model_copy()
    for name, value in overrides.items():
        setattr(candidate, name, value)

    for name in overrides:
        setattr(analytics_config, name, getattr(candidate, name))

    if args.output_dir:
        settings.data_path_processed = args.output_dir
    if args.profile:
        settings.enable_profiling = True

def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    apply_overrides(args)

    pipeline = StoreBasketPipeline(data_path=args.data_dir)
    pipeline.run()

if __name__ == "__main__":
    main()
