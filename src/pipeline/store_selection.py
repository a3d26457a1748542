"""Geographic store selection with k-medoids"""

from dataclasses import dataclass
from typing import List, Optional
import time

import kmedoids
import numpy as np
import pandas as pd
from pyspark.sql import DataFrame
from pyspark.sql.functions import broadcast
from pyspark.sql.types import BooleanType, IntegerType, StructField, StructType
from sklearn.metrics import pairwise_distances

from src.utils.spark_manager import SparkManager
from src.utils.logger import logger
from src.utils.config import analytics_config

ASSIGNMENT_SCHEMA = StructType([
    StructField("store_id", IntegerType(), False),
    StructField("cluster", IntegerType(), False),
    StructField("medoid_store_id", IntegerType(), False),
    StructField("is_medoid", BooleanType(), False),
])

@dataclass(frozen=True)
class StoreSelection:
    """Outcome of clustering stores around k medoids"""
    medoid_store_ids: List[int]
    assignments: DataFrame
    loss: float

    @property
    def n_selected(self) -> int:
        return len(self.medoid_store_ids)

class StoreSelector:
    """Pick representative stores by k-medoids on normalized coordinates"""

    def __init__(self, n_clusters: Optional[int] = None,
                 method: Optional[str] = None,
                 random_state: Optional[int] = None):
        self.config = analytics_config
        self._n_clusters = n_clusters
        self._method = method
        self._random_state = random_state
        self.spark = SparkManager.get_session()

    @property
    def n_clusters(self) -> int:
        return self._n_clusters or self.config.n_store_clusters

    @property
    def method(self) -> str:
        return (self._method or self.config.kmedoids_method).lower()

    @property
    def random_state(self) -> int:
        return self.config.random_state if self._random_state is None else self._random_state

    def select_stores(self, stores: DataFrame) -> StoreSelection:
        """Cluster stores and return the medoid stores with the assignment table"""
        start_time = time.time()

        points = stores \
            .select("store_id", "normalized_lat", "normalized_lon") \
            .orderBy("store_id") \
            .toPandas()

        n_stores = len(points)
        logger.info(f"Clustering {n_stores:,} stores into {self.n_clusters} clusters "
                    f"({self.method})")

        if n_stores == 0:
            logger.warning("No stores with coordinates; nothing to select")
            return StoreSelection([], self._to_assignments(points, [], []), 0.0)

        if n_stores <= self.n_clusters:
            logger.warning(f"Only {n_stores} stores for {self.n_clusters} clusters; "
                           f"every store is its own medoid")
            medoids = list(range(n_stores))
            labels = list(range(n_stores))
            loss = 0.0
        else:
            coordinates = points[["normalized_lat", "normalized_lon"]].to_numpy(dtype=np.float64)
            distances = pairwise_distances(coordinates, metric="euclidean")
            result = self._run_kmedoids(distances)
            medoids = [int(m) for m in result.medoids]
            labels = [int(label) for label in result.labels]
            loss = float(result.loss)

        assignments = self._to_assignments(points, medoids, labels)
        medoid_ids = sorted(int(points["store_id"].iloc[m]) for m in medoids)

        duration = time.time() - start_time
        logger.info(f"Selected medoid stores {medoid_ids} (loss={loss:.4f}) in {duration:.1f}s")

        return StoreSelection(medoid_ids, assignments, loss)

    def restrict_transactions(self, transactions: DataFrame,
                              selection: StoreSelection) -> DataFrame:
        """Keep only the transaction lines of the selected stores"""
        initial_count = transactions.count()

        selected = self.spark.createDataFrame(
            [(store_id,) for store_id in selection.medoid_store_ids],
            StructType([StructField("store_id", IntegerType(), False)])
        )
        restricted = transactions.join(broadcast(selected), "store_id", "left_semi")

        final_count = restricted.count()
        logger.info(f"Transactions: kept {final_count:,} of {initial_count:,} lines "
                    f"from {selection.n_selected} selected stores "
                    f"({initial_count - final_count:,} dropped)")
        return restricted

    def _run_kmedoids(self, distances: np.ndarray):
        if self.method == "fasterpam":
            return kmedoids.fasterpam(distances, self.n_clusters,
                                      max_iter=self.config.kmedoids_max_iter,
                                      init="random",
                                      random_state=self.random_state)
        # BUILD initialization makes PAM deterministic
        return kmedoids.pam(distances, self.n_clusters,
                            max_iter=self.config.kmedoids_max_iter,
                            init="build")

    def _to_assignments(self, points: pd.DataFrame, medoids: List[int],
                        labels: List[int]) -> DataFrame:
        store_ids = [int(s) for s in points["store_id"]]
        medoid_store_ids = [store_ids[m] for m in medoids]
        rows = [
            (store_id, label, medoid_store_ids[label], store_id == medoid_store_ids[label])
            for store_id, label in zip(store_ids, labels)
        ]
        return self.spark.createDataFrame(rows, ASSIGNMENT_SCHEMA)
