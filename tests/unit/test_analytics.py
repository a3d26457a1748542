"""Unit tests for rule mining and ranking"""

import pytest
from itertools import combinations
from pyspark.sql import functions as F
from src.pipeline.analytics import AnalyticsEngine

def make_baskets(spark, baskets):
    rows = [([str(item) for item in sorted(basket)],) for basket in baskets]
    return spark.createDataFrame(rows, "items array<string>") \
        .withColumn("basket_size", F.size("items"))

GROCERY_BASKETS = [
    {1, 2, 3}, {1, 2}, {1, 2, 4}, {1, 3}, {2, 3},
    {1, 2, 3, 4, 5}, {4, 5}, {5}, {1, 2, 3, 5}, {2, 4},
]

def brute_force_rules(baskets, min_support, min_confidence, max_length):
    """Enumerate every single-consequent rule directly from the baskets"""
    n = len(baskets)
    items = sorted(set().union(*baskets))

    def count(itemset):
        return sum(1 for b in baskets if itemset <= b)

    rules = {}
    for size in range(2, max_length + 1):
        for combo in combinations(items, size):
            itemset = set(combo)
            joint = count(itemset)
            if joint / n < min_support:
                continue
            for consequent in combo:
                antecedent = itemset - {consequent}
                confidence = joint / count(antecedent)
                if confidence >= min_confidence:
                    key = (tuple(sorted(map(str, antecedent))), (str(consequent),))
                    lift = confidence / (count({consequent}) / n)
                    rules[key] = (joint / n, confidence, lift)
    return rules

class TestAnalyticsEngine:
    """Test association rule mining"""

    def test_rules_match_brute_force(self, spark, analytics_settings, monkeypatch):
        """Test support, confidence and lift against direct enumeration"""
        monkeypatch.setattr(analytics_settings, "min_support", 0.2)
        monkeypatch.setattr(analytics_settings, "min_confidence", 0.5)
        baskets = make_baskets(spark, GROCERY_BASKETS)

        rules = AnalyticsEngine().mine_association_rules(baskets).collect()
        mined = {
            (tuple(sorted(r["antecedent"])), tuple(r["consequent"])):
                (r["support"], r["confidence"], r["lift"])
            for r in rules
        }
        expected = brute_force_rules(GROCERY_BASKETS, 0.2, 0.5, 4)

        assert set(mined) == set(expected)
        for key, (support, confidence, lift) in expected.items():
            assert mined[key][0] == pytest.approx(support)
            assert mined[key][1] == pytest.approx(confidence)
            assert mined[key][2] == pytest.approx(lift)

    def test_rules_respect_thresholds(self, spark, analytics_settings, monkeypatch):
        """Test that every rule meets support, confidence and length limits"""
        monkeypatch.setattr(analytics_settings, "min_support", 0.1)
        monkeypatch.setattr(analytics_settings, "min_confidence", 0.3)
        monkeypatch.setattr(analytics_settings, "max_rule_length", 3)
        baskets = make_baskets(spark, GROCERY_BASKETS)

        rules = AnalyticsEngine().mine_association_rules(baskets).collect()

        assert rules
        for r in rules:
            assert r["support"] >= 0.1
            assert r["confidence"] >= 0.3
            assert len(r["antecedent"]) + len(r["consequent"]) <= 3
            assert r["rule_length"] == len(r["antecedent"]) + len(r["consequent"])
            assert not set(r["antecedent"]) & set(r["consequent"])
            assert r["antecedent"] and r["consequent"]

    def test_max_rule_length_drops_long_rules(self, spark, analytics_settings, monkeypatch):
        monkeypatch.setattr(analytics_settings, "min_support", 0.5)
        monkeypatch.setattr(analytics_settings, "max_rule_length", 2)
        baskets = make_baskets(spark, [{1, 2, 3}] * 4)

        rules = AnalyticsEngine().mine_association_rules(baskets)

        # Six 2-item rules; the three 3-item rules exceed the limit
        assert rules.count() == 6
        assert rules.agg(F.max("rule_length")).first()[0] == 2

    def test_empty_baskets_yield_no_rules(self, spark, analytics_settings):
        """Test that an empty basket set is not an error"""
        baskets = make_baskets(spark, [])

        engine = AnalyticsEngine()
        rules = engine.mine_association_rules(baskets)
        ranked = engine.rank_rules(rules)

        assert rules.count() == 0
        assert ranked.count() == 0
        assert engine.format_rules(ranked).columns == ["rule_text", "support", "confidence", "lift"]

    def test_rank_rules_orders_by_lift(self, spark, analytics_settings, monkeypatch):
        """Test lift ordering and the top-N cut"""
        monkeypatch.setattr(analytics_settings, "min_support", 0.1)
        monkeypatch.setattr(analytics_settings, "min_confidence", 0.1)
        engine = AnalyticsEngine()
        rules = engine.mine_association_rules(make_baskets(spark, GROCERY_BASKETS))
        total = rules.count()

        ranked = engine.rank_rules(rules, top_n=5).collect()
        lifts = [r["lift"] for r in ranked]

        assert total > 5
        assert len(ranked) == 5
        assert lifts == sorted(lifts, reverse=True)
        assert lifts[0] == rules.agg(F.max("lift")).first()[0]

    def test_rank_rules_keeps_all_when_fewer_than_top_n(self, spark, analytics_settings):
        engine = AnalyticsEngine()
        rules = engine.mine_association_rules(make_baskets(spark, GROCERY_BASKETS))

        ranked = engine.rank_rules(rules)

        assert ranked.count() == min(100, rules.count())

    def test_ranking_is_repeatable(self, spark, analytics_settings):
        """Test that ties are broken the same way on every run"""
        engine = AnalyticsEngine()
        baskets = make_baskets(spark, GROCERY_BASKETS)

        first = [r["rule_text"] for r in engine.rank_rules(
            engine.mine_association_rules(baskets), top_n=10).collect()]
        second = [r["rule_text"] for r in engine.rank_rules(
            engine.mine_association_rules(baskets), top_n=10).collect()]

        assert first == second

    def test_rule_text(self, spark):
        """Test readable rule text with numerically sorted items"""
        rules = spark.createDataFrame(
            [(["20", "3"], ["100"], 0.5, 2.0, 0.25, 3)],
            "antecedent array<string>, consequent array<string>, confidence double, "
            "lift double, support double, rule_length int"
        )

        table = AnalyticsEngine().format_rules(rules).first()

        assert table["rule_text"] == "{3,20} => {100}"
        assert table["support"] == 0.25
        assert table["confidence"] == 0.5
        assert table["lift"] == 2.0

    def test_frequent_itemsets(self, spark, analytics_settings, monkeypatch):
        monkeypatch.setattr(analytics_settings, "min_support", 0.5)
        baskets = make_baskets(spark, [{1, 2}, {1, 2}, {1}, {3}])

        itemsets = {tuple(r["items"]): r["support"]
                    for r in AnalyticsEngine().frequent_itemsets(baskets).collect()}

        assert itemsets == {("1",): 0.75, ("2",): 0.5, ("1", "2"): 0.5}

    def test_frequent_itemsets_capped_at_max_length(self, spark, analytics_settings,
                                                    monkeypatch):
        """Test that itemsets longer than the rule length limit are dropped"""
        monkeypatch.setattr(analytics_settings, "min_support", 0.5)
        monkeypatch.setattr(analytics_settings, "max_rule_length", 2)
        baskets = make_baskets(spark, [{1, 2, 3}] * 4)

        itemsets = AnalyticsEngine().frequent_itemsets(baskets)

        # Three singles and three pairs; the triple exceeds the limit
        assert itemsets.count() == 6
        assert itemsets.agg(F.max(F.size("items"))).first()[0] == 2

    def test_describe_rule_items(self, spark):
        """Test catalog details for SKUs appearing in rules"""
        rules = spark.createDataFrame(
            [(["101"], ["102"]), (["102"], ["101"])],
            "antecedent array<string>, consequent array<string>"
        )
        skus = spark.createDataFrame([
            (101, 800, "BRANDA", "V1", "ST1", "RED", "7"),
            (102, 801, "BRANDB", "V2", "ST2", "BLUE", "8"),
            (103, 800, "BRANDC", "V3", "ST3", "RED", "9"),
        ], "sku_id long, department_id int, brand string, vendor string, style string, "
           "color string, size string")
        departments = spark.createDataFrame(
            [(800, "SHOES"), (801, "COSMETICS")], "dept_id int, dept_description string")
        prices = spark.createDataFrame([
            (101, 1, 10.0, 20.0),
            (101, 2, 12.0, 30.0),
            (101, 9, 99.0, 99.0),   # store outside the selection
            (102, 1, 5.0, 8.0),
        ], "sku_id long, store_id int, cost double, retail double")

        result = AnalyticsEngine().describe_rule_items(
            rules, skus, departments, prices, store_ids=[1, 2])
        rows = {r["sku_id"]: r for r in result.collect()}

        assert sorted(rows) == [101, 102]
        assert rows[101]["dept_description"] == "SHOES"
        assert rows[101]["rule_count"] == 2
        assert rows[101]["avg_retail"] == 25.0
        assert rows[101]["priced_stores"] == 2
        assert rows[102]["brand"] == "BRANDB"

    def test_rule_summary(self, spark):
        rules = spark.createDataFrame(
            [(2.0, 0.5, 0.1), (4.0, 0.7, 0.3)], "lift double, confidence double, support double")

        summary = AnalyticsEngine().rule_summary(rules)

        assert summary["rule_count"] == 2
        assert summary["max_lift"] == 4.0
        assert summary["avg_lift"] == pytest.approx(3.0)
        assert summary["avg_confidence"] == pytest.approx(0.6)
