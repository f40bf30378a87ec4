"""Tests for the diagnostic rule engine."""

from __future__ import annotations

import pytest
from conftest import build_document, build_world

from spark_analyze.analyzer import (
    LAG_PRONE_ENTITY_TYPES,
    analyze,
    calculate_overall_score,
    classify_at_least,
    classify_at_most,
    find_problematic_chunks,
    find_problematic_entity_types,
    is_lag_prone,
    resolve_metrics,
    suggest_heap_size_gb,
)
from spark_analyze.models import AnalysisResult, Issue, Snapshot, WorldStatistics


def analyze_document(**kwargs) -> AnalysisResult:
    return analyze(Snapshot.model_validate(build_document(**kwargs)))


# ============================================================
# Metric classification
# ============================================================


@pytest.mark.parametrize(
    ("value", "expected"),
    [(20.0, "good"), (19.5, "good"), (19.49, "warning"), (18.0, "warning"), (17.99, "critical")],
)
def test_tps_classification_bounds(value, expected):
    assert classify_at_least(value, 19.5, 18.0) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [(0.0, "good"), (40.0, "good"), (40.1, "warning"), (50.0, "warning"), (50.1, "critical")],
)
def test_mspt_classification_bounds_are_inclusive(value, expected):
    assert classify_at_most(value, 40.0, 50.0) == expected


def test_entity_status_uses_total_entities():
    result = analyze_document(world=build_world(total_entities=5000))
    assert result.metrics.entities.status == "good"
    result = analyze_document(world=build_world(total_entities=10000))
    assert result.metrics.entities.status == "warning"
    result = analyze_document(world=build_world(total_entities=10001))
    assert result.metrics.entities.status == "critical"


def test_missing_readings_fall_back_to_defaults():
    resolved = resolve_metrics(Snapshot())

    assert resolved.tps == 20.0
    assert resolved.mspt == 0.0
    assert resolved.cpu == 0.0
    assert resolved.memory_usage == 0.0
    assert resolved.total_entities == 0


def test_memory_usage_is_zero_when_heap_max_missing():
    resolved = resolve_metrics(
        Snapshot.model_validate(build_document(heap_used=500, heap_max=None))
    )
    assert resolved.memory_usage == 0.0


def test_empty_snapshot_is_healthy():
    result = analyze(Snapshot())

    assert result.overall_score == 100
    assert result.issues == []
    assert result.recommendations == []


# ============================================================
# Baseline and per-check behavior
# ============================================================


def test_healthy_snapshot_scores_100(healthy_snapshot):
    result = analyze(healthy_snapshot)

    assert result.overall_score == 100
    assert result.issues == []
    assert result.recommendations == []
    assert result.metrics.performance.tps.status == "good"
    assert result.metrics.memory.usage == pytest.approx(10.0)


def test_low_tps_emits_critical_issue_and_four_step_recommendation(healthy_snapshot):
    result = analyze_document(tps=15.0)

    assert result.metrics.performance.tps.status == "critical"
    assert [issue.title for issue in result.issues] == ["Critically Low TPS"]
    assert result.issues[0].severity == "critical"
    assert result.issues[0].description == (
        "Server TPS is 15.00, significantly below the optimal 20.0"
    )
    assert len(result.recommendations) == 1
    assert result.recommendations[0].priority == "high"
    assert len(result.recommendations[0].steps) == 4
    assert analyze(healthy_snapshot).overall_score - result.overall_score == 35


def test_warning_tps_has_no_issue():
    result = analyze_document(tps=18.5)

    assert result.metrics.performance.tps.status == "warning"
    assert result.issues == []
    assert result.overall_score == 85


@pytest.mark.parametrize(
    ("mspt", "titles", "score"),
    [
        (45.0, [], 90),
        (60.0, ["High Tick Time"], 78),
        (120.0, ["Extremely High Tick Time"], 75),
    ],
)
def test_mspt_issues_without_recommendation(mspt, titles, score):
    result = analyze_document(mspt=mspt)

    assert [issue.title for issue in result.issues] == titles
    assert result.recommendations == []
    assert result.overall_score == score


def test_critical_memory_suggests_larger_heap():
    result = analyze_document(heap_used=9_500_000_000, heap_max=10_000_000_000)

    assert result.metrics.memory.usage == pytest.approx(95.0)
    assert result.metrics.memory.status == "critical"
    assert result.issues[0].title == "Critical Memory Usage"
    assert result.issues[0].description == (
        "Memory usage at 95.0% - dangerously close to maximum"
    )
    step = result.recommendations[0].steps[0]
    assert step == "Increase -Xmx from 9.3GB to at least 14GB"
    assert result.overall_score == 80


def test_suggested_heap_size_rounds_up():
    assert suggest_heap_size_gb(10_000_000_000) == 14
    assert suggest_heap_size_gb(4 * 1024**3) == 6


@pytest.mark.parametrize(
    ("used", "status", "severity", "score"),
    [(82, "warning", "warning", 90), (88, "critical", "warning", 83)],
)
def test_high_memory_warning_has_no_recommendation(used, status, severity, score):
    result = analyze_document(heap_used=used, heap_max=100)

    assert result.metrics.memory.status == status
    assert [issue.severity for issue in result.issues] == [severity]
    assert result.issues[0].title == "High Memory Usage"
    assert result.recommendations == []
    assert result.overall_score == score


def test_gc_emits_one_issue_and_recommendation_per_slow_collector():
    result = analyze_document(
        gc={
            "G1 Young Generation": {"total": 10, "avgTime": 150.0, "avgFrequency": 100},
            "G1 Old Generation": {"total": 1, "avgTime": 120.0, "avgFrequency": 100},
            "G1 Concurrent GC": {"total": 4, "avgTime": 50.0, "avgFrequency": 100},
        }
    )

    assert [issue.description for issue in result.issues] == [
        "G1 Young Generation taking 150.0ms on average",
        "G1 Old Generation taking 120.0ms on average",
    ]
    assert [rec.title for rec in result.recommendations] == ["Optimize Garbage Collection"] * 2
    assert result.overall_score == 96


def test_gc_pause_at_threshold_is_not_flagged():
    result = analyze_document(gc={"ZGC": {"total": 3, "avgTime": 100.0, "avgFrequency": 1}})
    assert result.issues == []


def test_cpu_checks():
    assert analyze_document(cpu=80.0).issues == []
    assert analyze_document(cpu=80.0).overall_score == 92

    result = analyze_document(cpu=95.0)
    assert [issue.title for issue in result.issues] == ["Critical CPU Usage"]
    assert result.recommendations[0].title == "Reduce CPU Load"
    assert len(result.recommendations[0].steps) == 4
    assert result.overall_score == 80


# ============================================================
# Entity sub-analysis
# ============================================================


def test_problematic_chunks_sorted_descending():
    world_stats = WorldStatistics.model_validate(build_world(chunk_counts=[50, 300, 150]))

    chunks = find_problematic_chunks(world_stats)

    assert [chunk.count for chunk in chunks] == [300, 150]
    assert (chunks[0].x, chunks[0].z, chunks[0].world) == (10, -1, "world")


def test_problematic_chunk_ties_keep_traversal_order():
    world_stats = WorldStatistics.model_validate(
        {
            "totalEntities": 0,
            "worlds": [
                {"name": "world", "regions": [{"chunks": [{"x": 1, "z": 1, "entityCount": 200}]}]},
                {"name": "world_nether"},
                {
                    "name": "world_the_end",
                    "regions": [{"chunks": [{"x": 2, "z": 2, "entityCount": 200}]}],
                },
            ],
        }
    )

    chunks = find_problematic_chunks(world_stats)

    assert [chunk.world for chunk in chunks] == ["world", "world_the_end"]


def test_find_problematic_chunks_without_world_stats():
    assert find_problematic_chunks(None) == []


def test_only_lag_prone_types_are_flagged():
    flagged = find_problematic_entity_types({"minecraft:item": 600, "minecraft:cow": 50})
    assert flagged == [("minecraft:item", 600)]

    assert find_problematic_entity_types({"minecraft:cow": 50000}) == []


def test_problematic_types_sorted_by_count():
    flagged = find_problematic_entity_types(
        {"minecraft:arrow": 501, "minecraft:villager": 2000, "minecraft:item": 500}
    )
    assert flagged == [("minecraft:villager", 2000), ("minecraft:arrow", 501)]


def test_lag_prone_match_is_case_insensitive_substring():
    assert is_lag_prone("Minecraft:ZOMBIE_VILLAGER")
    assert is_lag_prone("minecraft:chest_minecart")
    assert not is_lag_prone("minecraft:pig")
    assert is_lag_prone("custom:widget", ["widget"])
    assert "falling_block" in LAG_PRONE_ENTITY_TYPES


def test_entity_issue_and_recommendation_order():
    result = analyze_document(
        world=build_world(
            total_entities=12000,
            entities={"minecraft:item": 600, "minecraft:armor_stand": 800},
            chunk_counts=[101, 500, 400, 300, 200],
        )
    )

    assert [issue.title for issue in result.issues] == [
        "High Entity Count",
        "Problematic Entity Types",
        "Entity Chunk Overload",
    ]
    assert result.issues[0].description == "12,000 entities detected (recommended: under 5,000)"
    assert result.issues[1].description == (
        "High counts of performance-impacting entities: "
        "minecraft:armor_stand: 800, minecraft:item: 600"
    )
    assert result.issues[2].description == (
        "5 chunks with excessive entities. Worst: 500 entities at [10, -1]"
    )

    clear_chunks, reduce_total = result.recommendations
    assert clear_chunks.steps == [
        "Clear entities at chunk [10, -1] (500 entities)",
        "Clear entities at chunk [20, -2] (400 entities)",
        "Clear entities at chunk [30, -3] (300 entities)",
        "Use command: /minecraft:kill @e[type=!player,distance=..100]",
        "Install entity limiting plugin",
    ]
    assert reduce_total.priority == "high"
    assert reduce_total.expected_improvement == "Could improve TPS by 5-10 points"
    assert len(reduce_total.steps) == 5
    assert result.metrics.entities.problematic_chunks == 5


def test_moderate_entity_count_gets_medium_recommendation_only():
    result = analyze_document(world=build_world(total_entities=7000))

    assert result.issues == []
    assert [rec.priority for rec in result.recommendations] == ["medium"]
    assert result.recommendations[0].expected_improvement == "Could improve TPS by 2-5 points"
    assert result.overall_score == 95


def test_excessive_entity_count_is_critical():
    result = analyze_document(world=build_world(total_entities=16000))

    assert result.issues[0].severity == "critical"
    assert result.issues[0].title == "Excessive Entity Count"
    assert result.overall_score == 85


def test_entity_checks_skipped_without_world_stats():
    result = analyze_document()
    assert result.metrics.entities.total == 0
    assert result.metrics.entities.problematic_chunks == 0


# ============================================================
# Ordering, scoring and purity
# ============================================================


def test_issue_and_recommendation_insertion_order(troubled_snapshot):
    result = analyze(troubled_snapshot)

    assert [issue.title for issue in result.issues] == [
        "Critically Low TPS",
        "Extremely High Tick Time",
        "Critical Memory Usage",
        "Long GC Pauses",
        "Excessive Entity Count",
        "Problematic Entity Types",
        "Entity Chunk Overload",
        "Critical CPU Usage",
    ]
    assert [rec.title for rec in result.recommendations] == [
        "Immediate TPS Optimization Required",
        "Increase Memory Allocation",
        "Optimize Garbage Collection",
        "Clear Problematic Chunks",
        "Reduce Overall Entity Count",
        "Reduce CPU Load",
    ]
    assert result.issues[5].description == (
        "High counts of performance-impacting entities: "
        "minecraft:item: 4000, minecraft:zombie: 700"
    )


def test_score_is_clamped_at_zero(troubled_snapshot):
    assert analyze(troubled_snapshot).overall_score == 0


def test_issue_penalties_double_count_metric_conditions(healthy_snapshot):
    metrics = analyze(healthy_snapshot).metrics
    issues = [
        Issue(severity="critical", category="X", title="a", description="", impact=""),
        Issue(severity="warning", category="X", title="b", description="", impact=""),
        Issue(severity="info", category="X", title="c", description="", impact=""),
    ]
    assert calculate_overall_score(metrics, issues) == 93


def test_score_never_exceeds_bounds(troubled_snapshot, healthy_snapshot):
    for snapshot in (troubled_snapshot, healthy_snapshot, Snapshot()):
        assert 0 <= analyze(snapshot).overall_score <= 100


def test_analyze_is_idempotent(troubled_snapshot):
    first = analyze(troubled_snapshot)
    second = analyze(troubled_snapshot)

    assert first == second
    assert first.model_dump() == second.model_dump()


def test_result_serializes_with_camel_case_keys(troubled_snapshot):
    payload = analyze(troubled_snapshot).model_dump(by_alias=True)

    assert payload["overallScore"] == 0
    assert "expectedImprovement" in payload["recommendations"][0]
    assert payload["metrics"]["entities"]["problematicChunks"] == 2
