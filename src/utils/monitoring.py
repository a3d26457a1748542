"""Monitoring and metrics collection module"""

from typing import Dict, Any, Optional
from datetime import datetime
from functools import wraps
import json
import time
from pathlib import Path
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server
from src.utils.logger import logger
from src.utils.config import settings

class MetricsCollector:
    """Collect and expose pipeline metrics"""

    def __init__(self, metrics_dir: Optional[Path] = None, serve: bool = True):
        self.enabled = settings.enable_metrics
        # Own registry so several collectors can coexist in one process
        self.registry = CollectorRegistry()

        self.pipeline_runs = Counter('pipeline_runs_total',
                                     'Total number of pipeline runs',
                                     ['status'], registry=self.registry)

        self.pipeline_duration = Histogram('pipeline_duration_seconds',
                                           'Pipeline execution duration',
                                           buckets=(10, 30, 60, 120, 300, 600, 1800),
                                           registry=self.registry)

        self.stage_duration = Histogram('stage_duration_seconds',
                                        'Stage execution duration',
                                        ['stage'], registry=self.registry)

        self.rows_dropped = Counter('rows_dropped_total',
                                    'Rows removed by filtering stages',
                                    ['stage'], registry=self.registry)

        self.rules_mined = Gauge('association_rules_mined',
                                 'Rules meeting the mining thresholds',
                                 registry=self.registry)

        self.data_quality_score = Gauge('data_quality_score',
                                        'Current data quality score',
                                        registry=self.registry)

        if self.enabled and serve:
            try:
                start_http_server(settings.metrics_port, registry=self.registry)
                logger.info(f"Metrics server started on port {settings.metrics_port}")
            except OSError as e:
                logger.warning(f"Failed to start metrics server: {e}")

        self.metrics_dir = Path(metrics_dir or settings.project_root / "metrics")
        self.metrics_dir.mkdir(exist_ok=True, parents=True)

        self.current_run_metrics: Dict[str, Any] = {"stages": {}, "rows_dropped": {}}

    def record_pipeline_run(self, results: Dict[str, Any]):
        """Record pipeline run metrics"""
        if not self.enabled:
            return

        status = results.get('status', 'unknown')
        self.pipeline_runs.labels(status=status).inc()

        if 'total_duration_seconds' in results:
            self.pipeline_duration.observe(results['total_duration_seconds'])

        if 'rules_mined' in results:
            self.rules_mined.set(results['rules_mined'])

        self._save_metrics_to_file({**results, **self.current_run_metrics})

    def record_stage_duration(self, stage: str, duration: float):
        """Record stage execution duration"""
        self.current_run_metrics['stages'][stage] = {
            'duration': duration,
            'timestamp': datetime.now().isoformat()
        }
        if self.enabled:
            self.stage_duration.labels(stage=stage).observe(duration)

    def record_rows_dropped(self, stage: str, dropped: int):
        """Record how many rows a filtering stage removed"""
        self.current_run_metrics['rows_dropped'][stage] = dropped
        if self.enabled and dropped > 0:
            self.rows_dropped.labels(stage=stage).inc(dropped)

    def record_pipeline_failure(self, stage: str, error: str):
        """Record pipeline failure"""
        if not self.enabled:
            return

        self.pipeline_runs.labels(status='failed').inc()
        self._save_metrics_to_file({
            'status': 'failed',
            'failed_stage': stage,
            'error': error,
            'timestamp': datetime.now().isoformat()
        })

    def update_data_quality_score(self, score: float):
        if self.enabled:
            self.data_quality_score.set(score)

    def _save_metrics_to_file(self, metrics: Dict[str, Any]):
        """Save metrics to JSON file"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        metrics_file = self.metrics_dir / f"pipeline_run_{timestamp}.json"

        try:
            with open(metrics_file, 'w') as f:
                json.dump(metrics, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to save metrics to file: {e}")

    def get_historical_metrics(self, days: int = 7) -> Dict[str, Any]:
        """Summarize runs recorded in the last `days` days"""
        metrics_files = sorted(self.metrics_dir.glob("pipeline_run_*.json"))

        cutoff_date = datetime.now().timestamp() - (days * 24 * 3600)
        recent_files = [f for f in metrics_files if f.stat().st_mtime > cutoff_date]

        historical_data = []
        for file in recent_files:
            try:
                with open(file, 'r') as f:
                    historical_data.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read metrics file {file}: {e}")

        if not historical_data:
            return {'message': 'No historical data available'}

        completed = [m for m in historical_data if m.get('status') == 'completed']
        durations = [m.get('total_duration_seconds', 0) for m in completed]
        rule_counts = [m['rules_mined'] for m in completed if 'rules_mined' in m]

        return {
            'total_runs': len(historical_data),
            'successful_runs': len(completed),
            'failed_runs': len([m for m in historical_data if m.get('status') == 'failed']),
            'avg_duration': sum(durations) / len(durations) if durations else 0,
            'min_duration': min(durations) if durations else 0,
            'max_duration': max(durations) if durations else 0,
            'last_rule_count': rule_counts[-1] if rule_counts else None
        }

class PerformanceProfiler:
    """Profile pipeline performance"""

    def __init__(self):
        self.timings: Dict[str, list] = {}
        self.enabled = settings.enable_profiling

    def profile_function(self, func_name: str):
        """Decorator to profile function execution"""
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                if not self.enabled:
                    return func(*args, **kwargs)

                start_time = time.time()
                result = func(*args, **kwargs)
                duration = time.time() - start_time

                self.timings.setdefault(func_name, []).append(duration)

                if duration > 1.0:
                    logger.debug(f"{func_name} took {duration:.2f}s")

                return result

            return wrapper
        return decorator

    def get_summary(self) -> Dict[str, Any]:
        """Get profiling summary"""
        summary = {}

        for func_name, durations in self.timings.items():
            summary[func_name] = {
                'calls': len(durations),
                'total_time': sum(durations),
                'avg_time': sum(durations) / len(durations),
                'min_time': min(durations),
                'max_time': max(durations)
            }

        return summary
