"""Data quality checks module"""

from pathlib import Path
from pyspark.sql import DataFrame
from pyspark.sql import functions as F
from typing import Dict, List, Tuple, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
import json
from src.utils.logger import logger
from src.utils.config import analytics_config

@dataclass
class QualityCheckResult:
    """Result of a quality check"""
    name: str
    status: str  # 'passed', 'failed', 'warning'
    details: Optional[str] = None
    message: Optional[str] = None
    severity: str = 'error'  # 'error', 'warning', 'info'
    metrics: Dict[str, Any] = field(default_factory=dict)

class DataQualityChecker:
    """Check transactions, baskets and mined rules against pipeline invariants"""

    def __init__(self):
        self.checks_passed: List[QualityCheckResult] = []
        self.checks_failed: List[QualityCheckResult] = []
        self.checks_warning: List[QualityCheckResult] = []
        self.config = analytics_config

    def run_all_checks(self, transactions: DataFrame,
                       baskets: Optional[DataFrame] = None,
                       rules: Optional[DataFrame] = None) -> Tuple[bool, Dict]:
        """Run all data quality checks with detailed reporting"""
        logger.info("="*60)
        logger.info("Starting data quality checks")

        self.checks_passed = []
        self.checks_failed = []
        self.checks_warning = []

        check_groups = [
            ("Transaction Checks", [
                lambda: self._check_row_count(transactions),
                lambda: self._check_key_nulls(transactions),
                lambda: self._check_duplicates(transactions),
                lambda: self._check_amounts(transactions),
                lambda: self._check_key_consistency(transactions)
            ])
        ]

        if baskets is not None:
            check_groups.append(("Basket Checks", [
                lambda: self._check_baskets(baskets),
                lambda: self._check_basket_distribution(baskets)
            ]))

        if rules is not None:
            check_groups.append(("Rule Checks", [
                lambda: self._check_rule_thresholds(rules),
                lambda: self._check_rule_structure(rules),
                lambda: self._check_rule_ordering(rules)
            ]))

        for group_name, checks in check_groups:
            logger.info(f"Running {group_name}")
            for check in checks:
                try:
                    check()
                except Exception as e:
                    logger.error(f"Check in {group_name} failed with error: {e}")
                    self.checks_failed.append(
                        QualityCheckResult(
                            name=f"{group_name} - Error",
                            status="failed",
                            message=str(e),
                            severity="error"
                        )
                    )

        total_checks = len(self.checks_passed) + len(self.checks_failed) + len(self.checks_warning)
        quality_score = (len(self.checks_passed) / total_checks * 100) if total_checks > 0 else 100.0

        has_critical_errors = any(c.severity == 'error' for c in self.checks_failed)

        results = {
            "total_checks": total_checks,
            "passed": len(self.checks_passed),
            "failed": len(self.checks_failed),
            "warnings": len(self.checks_warning),
            "quality_score": quality_score,
            "passed_checks": [self._serialize_check(c) for c in self.checks_passed],
            "failed_checks": [self._serialize_check(c) for c in self.checks_failed],
            "warning_checks": [self._serialize_check(c) for c in self.checks_warning],
            "timestamp": datetime.now().isoformat(),
            "has_critical_errors": has_critical_errors
        }

        self._log_quality_summary(results)

        return not has_critical_errors, results

    def _serialize_check(self, check: QualityCheckResult) -> Dict:
        return {
            "name": check.name,
            "status": check.status,
            "details": check.details,
            "message": check.message,
            "severity": check.severity,
            "metrics": check.metrics
        }

    def _log_quality_summary(self, results: Dict):
        quality_score = results['quality_score']

        if results['has_critical_errors']:
            logger.error(f"Data quality FAILED: Score {quality_score:.1f}%")
            for check in self.checks_failed[:5]:
                logger.error(f"  {check.name}: {check.message}")
        elif results['warnings'] > 0:
            logger.warning(f"Data quality PASSED with warnings: Score {quality_score:.1f}%")
            for check in self.checks_warning[:5]:
                logger.warning(f"  {check.name}: {check.message}")
        else:
            logger.success(f"Data quality EXCELLENT: Score {quality_score:.1f}%")

    # Transactions

    def _check_row_count(self, df: DataFrame, min_rows: Optional[int] = None):
        if min_rows is None:
            min_rows = self.config.min_rows_threshold

        row_count = df.count()
        logger.info(f"Checking row count: {row_count:,} (min required: {min_rows:,})")

        if row_count < min_rows:
            self._add_failed(
                QualityCheckResult(
                    name="Row Count Check",
                    status="failed",
                    message=f"Only {row_count:,} rows found (minimum: {min_rows:,})",
                    severity="error",
                    metrics={"row_count": row_count, "min_required": min_rows}
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Row Count Check",
                    status="passed",
                    details=f"Found {row_count:,} rows",
                    metrics={"row_count": row_count}
                )
            )

    def _check_key_nulls(self, df: DataFrame):
        """Every basket key column and sku_id must be populated"""
        columns = ["sku_id"] + [c for c in self.config.transaction_key if c in df.columns]

        null_counts = df.select([
            F.sum(F.col(c).isNull().cast("int")).alias(c) for c in columns
        ]).collect()[0].asDict()
        offending = {c: int(n) for c, n in null_counts.items() if n}

        if offending:
            self._add_failed(
                QualityCheckResult(
                    name="Key Null Check",
                    status="failed",
                    message=f"Nulls in key columns: {offending}",
                    severity="error",
                    metrics=offending
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Key Null Check",
                    status="passed",
                    details=f"No nulls in {', '.join(columns)}"
                )
            )

    def _check_duplicates(self, df: DataFrame):
        """Identical transaction lines usually mean a double-loaded file"""
        total_count = df.count()
        duplicates = total_count - df.distinct().count()
        dup_rate = duplicates / total_count if total_count > 0 else 0
        metrics = {"total_records": total_count, "duplicates": duplicates, "dup_rate": dup_rate}

        if dup_rate > self.config.max_duplicate_rate:
            self._add_failed(
                QualityCheckResult(
                    name="Duplicate Check",
                    status="failed",
                    message=f"High duplicate rate: {dup_rate:.1%} "
                            f"(threshold: {self.config.max_duplicate_rate:.1%})",
                    severity="error",
                    metrics=metrics
                )
            )
        elif duplicates > 0:
            self._add_warning(
                QualityCheckResult(
                    name="Duplicate Check",
                    status="warning",
                    message=f"Found {duplicates:,} duplicate lines ({dup_rate:.1%})",
                    severity="warning",
                    metrics=metrics
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Duplicate Check",
                    status="passed",
                    details="No duplicate lines found",
                    metrics=metrics
                )
            )

    def _check_amounts(self, df: DataFrame):
        """Non-positive amounts are returns; report their share"""
        stats = df.agg(
            F.count("*").alias("total"),
            F.sum((F.col("amount") <= 0).cast("int")).alias("non_positive"),
            F.sum(F.col("amount").isNull().cast("int")).alias("nulls")
        ).collect()[0]

        total = stats["total"] or 0
        non_positive = stats["non_positive"] or 0
        nulls = stats["nulls"] or 0
        metrics = {"non_positive_amounts": non_positive, "null_amounts": nulls}

        if non_positive or nulls:
            self._add_warning(
                QualityCheckResult(
                    name="Amount Check",
                    status="warning",
                    message=f"{non_positive:,} non-positive and {nulls:,} null amounts "
                            f"in {total:,} lines",
                    severity="warning",
                    metrics=metrics
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Amount Check",
                    status="passed",
                    details="All amounts positive",
                    metrics=metrics
                )
            )

    def _check_key_consistency(self, df: DataFrame):
        """Warn when the key without sale_date spans several dates.

        Registers that reset their transaction numbers produce the same
        (store, register, transaction) on different days.
        """
        key = [c for c in self.config.transaction_key if c in df.columns]
        if "sale_date" not in key or len(key) < 2:
            self._add_passed(
                QualityCheckResult(
                    name="Key Consistency Check",
                    status="passed",
                    details="Transaction key does not include sale_date"
                )
            )
            return

        without_date = [c for c in key if c != "sale_date"]
        reused = df.groupBy(*without_date) \
            .agg(F.countDistinct("sale_date").alias("dates")) \
            .filter(F.col("dates") > 1) \
            .count()

        if reused > 0:
            self._add_warning(
                QualityCheckResult(
                    name="Key Consistency Check",
                    status="warning",
                    message=f"{reused:,} transaction numbers recur on different dates",
                    severity="warning",
                    metrics={"reused_keys": reused}
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Key Consistency Check",
                    status="passed",
                    details="Transaction numbers are unique across dates"
                )
            )

    # Baskets

    def _check_baskets(self, baskets: DataFrame):
        """Every basket holds at least one item and no item twice"""
        invalid = baskets.filter(
            (F.size("items") == 0) | (F.size(F.array_distinct("items")) != F.size("items"))
        ).count()

        if invalid > 0:
            self._add_failed(
                QualityCheckResult(
                    name="Basket Integrity Check",
                    status="failed",
                    message=f"{invalid:,} baskets are empty or hold repeated items",
                    severity="error",
                    metrics={"invalid_baskets": invalid}
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Basket Integrity Check",
                    status="passed",
                    details="All baskets non-empty with distinct items"
                )
            )

    def _check_basket_distribution(self, baskets: DataFrame):
        stats = baskets.agg(
            F.count("*").alias("baskets"),
            F.avg(F.size("items")).alias("avg_size"),
            F.max(F.size("items")).alias("max_size"),
            F.sum((F.size("items") == 1).cast("int")).alias("single_item")
        ).collect()[0]

        basket_count = stats["baskets"] or 0
        single_share = (stats["single_item"] or 0) / basket_count if basket_count else 0.0
        metrics = {
            "baskets": basket_count,
            "avg_size": float(stats["avg_size"] or 0.0),
            "max_size": int(stats["max_size"] or 0),
            "single_item_share": single_share
        }

        if basket_count == 0:
            self._add_warning(
                QualityCheckResult(
                    name="Basket Distribution Check",
                    status="warning",
                    message="No baskets to mine",
                    severity="warning",
                    metrics=metrics
                )
            )
        elif single_share > 0.9:
            self._add_warning(
                QualityCheckResult(
                    name="Basket Distribution Check",
                    status="warning",
                    message=f"{single_share:.1%} of baskets hold a single SKU",
                    severity="warning",
                    metrics=metrics
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Basket Distribution Check",
                    status="passed",
                    details=f"{basket_count:,} baskets, avg size {metrics['avg_size']:.2f}",
                    metrics=metrics
                )
            )

    # Rules

    def _check_rule_thresholds(self, rules: DataFrame):
        # Small tolerance for floating point support/confidence
        eps = 1e-12
        violations = rules.filter(
            (F.col("support") < self.config.min_support - eps) |
            (F.col("confidence") < self.config.min_confidence - eps)
        ).count()

        if violations > 0:
            self._add_failed(
                QualityCheckResult(
                    name="Rule Threshold Check",
                    status="failed",
                    message=f"{violations:,} rules below support/confidence thresholds",
                    severity="error",
                    metrics={"violations": violations}
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Rule Threshold Check",
                    status="passed",
                    details="All rules meet support and confidence thresholds"
                )
            )

    def _check_rule_structure(self, rules: DataFrame):
        """Sides are non-empty, disjoint and within the maximum rule length"""
        violations = rules.filter(
            (F.size("antecedent") == 0) |
            (F.size("consequent") == 0) |
            (F.size(F.array_intersect("antecedent", "consequent")) > 0) |
            (F.size("antecedent") + F.size("consequent") > self.config.max_rule_length)
        ).count()

        if violations > 0:
            self._add_failed(
                QualityCheckResult(
                    name="Rule Structure Check",
                    status="failed",
                    message=f"{violations:,} rules are empty, overlapping or too long",
                    severity="error",
                    metrics={"violations": violations}
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Rule Structure Check",
                    status="passed",
                    details=f"All rules disjoint with at most {self.config.max_rule_length} items"
                )
            )

    def _check_rule_ordering(self, rules: DataFrame):
        """Ranked rules: sorted by lift and no longer than top_n"""
        lifts = [row["lift"] for row in rules.select("lift").collect()]
        unsorted = sum(1 for a, b in zip(lifts, lifts[1:]) if a < b)
        metrics = {"rule_count": len(lifts), "out_of_order": unsorted}

        if unsorted or len(lifts) > self.config.top_n_rules:
            self._add_failed(
                QualityCheckResult(
                    name="Rule Ranking Check",
                    status="failed",
                    message=f"{unsorted} lift inversions, {len(lifts)} rules "
                            f"(limit {self.config.top_n_rules})",
                    severity="error",
                    metrics=metrics
                )
            )
        else:
            self._add_passed(
                QualityCheckResult(
                    name="Rule Ranking Check",
                    status="passed",
                    details=f"{len(lifts)} rules sorted by lift",
                    metrics=metrics
                )
            )

    def _add_passed(self, result: QualityCheckResult):
        self.checks_passed.append(result)

    def _add_failed(self, result: QualityCheckResult):
        self.checks_failed.append(result)

    def _add_warning(self, result: QualityCheckResult):
        self.checks_warning.append(result)

    def generate_quality_report(self, results: Dict, output_path: Optional[Path] = None) -> str:
        """Generate detailed quality report"""
        report = []
        report.append("="*60)
        report.append("DATA QUALITY REPORT")
        report.append("="*60)
        report.append(f"Generated: {results['timestamp']}")
        report.append(f"Quality Score: {results['quality_score']:.1f}%")
        report.append("")

        report.append("SUMMARY")
        report.append("-"*30)
        report.append(f"Total Checks: {results['total_checks']}")
        report.append(f"Passed: {results['passed']}")
        report.append(f"Failed: {results['failed']}")
        report.append(f"Warnings: {results['warnings']}")
        report.append("")

        if results['failed_checks']:
            report.append("FAILED CHECKS")
            report.append("-"*30)
            for check in results['failed_checks']:
                report.append(f"[FAIL] {check['name']}")
                report.append(f"   {check['message']}")
                if check.get('metrics'):
                    report.append(f"   Metrics: {check['metrics']}")
                report.append("")

        if results['warning_checks']:
            report.append("WARNINGS")
            report.append("-"*30)
            for check in results['warning_checks']:
                report.append(f"[WARN] {check['name']}")
                report.append(f"   {check['message']}")
                report.append("")

        report_text = "\n".join(report)

        if output_path:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                f.write(report_text)

            json_path = output_path.with_suffix('.json')
            with open(json_path, 'w') as f:
                json.dump(results, f, indent=2, default=str)

        return report_text
