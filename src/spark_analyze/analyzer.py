"""Diagnostic rule engine for spark profiles.

``analyze`` turns one :class:`Snapshot` into an :class:`AnalysisResult`:

- per-metric status classification (TPS, MSPT, CPU, heap, entities)
- issues, appended in a fixed order: performance, memory, GC, entities, CPU
- recommendations, appended in the same order
- an overall 0-100 health score

The engine is pure: no I/O, no shared state, and absent data never raises.
Missing readings fall back to the constants in ``METRIC_DEFAULTS``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from spark_analyze.models import (
    AnalysisResult,
    AnalyzedMetrics,
    DiagnosticThresholds,
    EntityMetrics,
    Issue,
    MemoryMetrics,
    MetricReading,
    MetricStatus,
    PerformanceMetrics,
    ProblematicChunk,
    Recommendation,
    Snapshot,
    WorldStatistics,
)

# ============================================================
# CONSTANTS
# ============================================================

DEFAULT_THRESHOLDS = DiagnosticThresholds()

# Fallback used when a reading is missing from the snapshot.
METRIC_DEFAULTS: dict[str, float] = {
    "tps": 20.0,  # systemStatistics.tps.last1m
    "mspt": 0.0,  # systemStatistics.mspt.last1m.mean
    "cpu": 0.0,  # systemStatistics.cpu.processUsage.last1m
    "memory_usage": 0.0,  # heap used/max, when either is missing or zero
    "total_entities": 0,  # platformStatistics.world.totalEntities
}

LAG_PRONE_ENTITY_TYPES: tuple[str, ...] = (
    "item",
    "arrow",
    "tnt",
    "falling_block",
    "boat",
    "minecart",
    "armor_stand",
    "item_frame",
    "villager",
    "zombie",
)

BYTES_PER_GB = 1024**3

# ============================================================
# RESOLVED METRICS
# ============================================================


@dataclass(frozen=True)
class ResolvedMetrics:
    """Raw readings with every fallback already applied."""

    tps: float
    mspt: float
    cpu: float
    memory_usage: float
    heap_max_bytes: int | None
    total_entities: int


def resolve_metrics(snapshot: Snapshot) -> ResolvedMetrics:
    """Read the classified metrics out of the snapshot, applying defaults."""
    stats = snapshot.system_statistics

    tps = METRIC_DEFAULTS["tps"]
    if stats.tps is not None and stats.tps.last1m is not None:
        tps = stats.tps.last1m

    mspt = METRIC_DEFAULTS["mspt"]
    if stats.mspt is not None and stats.mspt.last1m is not None:
        if stats.mspt.last1m.mean is not None:
            mspt = stats.mspt.last1m.mean

    cpu = METRIC_DEFAULTS["cpu"]
    if stats.cpu is not None and stats.cpu.process_usage is not None:
        if stats.cpu.process_usage.last1m is not None:
            cpu = stats.cpu.process_usage.last1m

    heap = stats.memory.heap if stats.memory is not None else None
    heap_max_bytes = heap.max if heap is not None else None
    memory_usage = METRIC_DEFAULTS["memory_usage"]
    if heap is not None and heap.used and heap.max:
        memory_usage = heap.used / heap.max * 100

    world_stats = snapshot.world_statistics
    total_entities = int(METRIC_DEFAULTS["total_entities"])
    if world_stats is not None:
        total_entities = world_stats.total_entities

    return ResolvedMetrics(
        tps=tps,
        mspt=mspt,
        cpu=cpu,
        memory_usage=memory_usage,
        heap_max_bytes=heap_max_bytes,
        total_entities=total_entities,
    )


# ============================================================
# METRIC CLASSIFICATION
# ============================================================


def classify_at_least(value: float, good: float, warning: float) -> MetricStatus:
    """Classify a metric where higher is better (TPS)."""
    if value >= good:
        return "good"
    if value >= warning:
        return "warning"
    return "critical"


def classify_at_most(value: float, good: float, warning: float) -> MetricStatus:
    """Classify a metric where lower is better; both bounds are inclusive."""
    if value <= good:
        return "good"
    if value <= warning:
        return "warning"
    return "critical"


def build_analyzed_metrics(
    resolved: ResolvedMetrics,
    problematic_chunk_count: int,
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> AnalyzedMetrics:
    """Assemble per-category readings and statuses."""
    t = thresholds
    return AnalyzedMetrics(
        performance=PerformanceMetrics(
            tps=MetricReading(
                value=resolved.tps,
                status=classify_at_least(resolved.tps, t.tps_good, t.tps_warning),
            ),
            mspt=MetricReading(
                value=resolved.mspt,
                status=classify_at_most(resolved.mspt, t.mspt_good_ms, t.mspt_warning_ms),
            ),
            cpu=MetricReading(
                value=resolved.cpu,
                status=classify_at_most(
                    resolved.cpu, t.cpu_good_percentage, t.cpu_warning_percentage
                ),
            ),
        ),
        memory=MemoryMetrics(
            usage=resolved.memory_usage,
            status=classify_at_most(
                resolved.memory_usage, t.memory_good_percentage, t.memory_warning_percentage
            ),
        ),
        entities=EntityMetrics(
            total=resolved.total_entities,
            problematic_chunks=problematic_chunk_count,
            status=classify_at_most(
                resolved.total_entities, t.entities_good, t.entities_warning
            ),
        ),
    )


# ============================================================
# SPATIAL / ENTITY RANKING
# ============================================================


def find_problematic_chunks(
    world_stats: WorldStatistics | None,
    threshold: int = DEFAULT_THRESHOLDS.chunk_entity_warning_count,
) -> list[ProblematicChunk]:
    """Collect chunks above ``threshold`` entities, busiest first.

    Ties keep world -> region -> chunk traversal order.
    """
    if world_stats is None:
        return []

    problematic: list[ProblematicChunk] = []
    for world in world_stats.worlds:
        if not world.regions:
            continue
        for region in world.regions:
            for chunk in region.chunks:
                if chunk.entity_count > threshold:
                    problematic.append(
                        ProblematicChunk(
                            world=world.name, x=chunk.x, z=chunk.z, count=chunk.entity_count
                        )
                    )

    return sorted(problematic, key=lambda chunk: chunk.count, reverse=True)


def is_lag_prone(entity_type: str, lag_prone_types: Iterable[str] = LAG_PRONE_ENTITY_TYPES) -> bool:
    """Case-insensitive substring match of an entity type against the lag-prone list."""
    lowered = entity_type.lower()
    return any(candidate in lowered for candidate in lag_prone_types)


def find_problematic_entity_types(
    entities: Mapping[str, int],
    threshold: int = DEFAULT_THRESHOLDS.entity_type_warning_count,
    lag_prone_types: Iterable[str] = LAG_PRONE_ENTITY_TYPES,
) -> list[tuple[str, int]]:
    """Lag-prone entity types above ``threshold``, highest count first."""
    lag_prone = tuple(lag_prone_types)
    problematic = [
        (entity_type, count)
        for entity_type, count in entities.items()
        if is_lag_prone(entity_type, lag_prone) and count > threshold
    ]
    return sorted(problematic, key=lambda item: item[1], reverse=True)


def _clear_chunk_step(chunk: ProblematicChunk) -> str:
    return f"Clear entities at chunk [{chunk.x}, {chunk.z}] ({chunk.count} entities)"


def analyze_entities(
    world_stats: WorldStatistics,
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> tuple[list[Issue], list[Recommendation]]:
    """Entity sub-analysis: totals, lag-prone types, overloaded chunks."""
    t = thresholds
    issues: list[Issue] = []
    recommendations: list[Recommendation] = []
    total_entities = world_stats.total_entities
    problematic_chunks = find_problematic_chunks(world_stats, t.chunk_entity_warning_count)

    # Total entity count
    if total_entities > t.entities_critical_issue:
        issues.append(
            Issue(
                severity="critical",
                category="Entities",
                title="Excessive Entity Count",
                description=(
                    f"{total_entities:,} entities detected "
                    f"(recommended: under {t.entities_recommended_max:,})"
                ),
                impact="Massive performance degradation, severe lag",
            )
        )
    elif total_entities > t.entities_warning_issue:
        issues.append(
            Issue(
                severity="warning",
                category="Entities",
                title="High Entity Count",
                description=(
                    f"{total_entities:,} entities detected "
                    f"(recommended: under {t.entities_recommended_max:,})"
                ),
                impact="Noticeable performance impact",
            )
        )

    # Entity type distribution
    problematic_types = find_problematic_entity_types(
        world_stats.entities, t.entity_type_warning_count
    )
    if problematic_types:
        types_list = ", ".join(f"{entity_type}: {count}" for entity_type, count in problematic_types)
        issues.append(
            Issue(
                severity="warning",
                category="Entities",
                title="Problematic Entity Types",
                description=f"High counts of performance-impacting entities: {types_list}",
                impact="Specific entity types causing disproportionate lag",
            )
        )

    # Overloaded chunks
    if problematic_chunks:
        worst = problematic_chunks[0]
        runners_up = problematic_chunks[1 : 1 + t.chunk_runner_up_count]
        issues.append(
            Issue(
                severity="critical",
                category="Entities",
                title="Entity Chunk Overload",
                description=(
                    f"{len(problematic_chunks)} chunks with excessive entities. "
                    f"Worst: {worst.count} entities at [{worst.x}, {worst.z}]"
                ),
                impact="Localized severe lag in specific areas",
            )
        )
        recommendations.append(
            Recommendation(
                priority="high",
                category="Entities",
                title="Clear Problematic Chunks",
                description="Remove excessive entities from overloaded chunks",
                expected_improvement="Could improve TPS by 3-8 points",
                steps=[
                    _clear_chunk_step(worst),
                    *(_clear_chunk_step(chunk) for chunk in runners_up),
                    "Use command: /minecraft:kill @e[type=!player,distance=..100]",
                    "Install entity limiting plugin",
                ],
            )
        )

    # General reduction
    if total_entities > t.entities_recommended_max:
        severe = total_entities > t.entities_warning_issue
        recommendations.append(
            Recommendation(
                priority="high" if severe else "medium",
                category="Entities",
                title="Reduce Overall Entity Count",
                description="Lower total server entity count for better performance",
                expected_improvement=f"Could improve TPS by {'5-10' if severe else '2-5'} points",
                steps=[
                    "Clear unnecessary entities with /kill commands",
                    "Limit mob spawners and farms",
                    "Install entity management plugins (ClearLag, FarmLimiter)",
                    "Set lower entity limits in spigot.yml",
                    "Reduce mob-spawn-range in spigot.yml",
                ],
            )
        )

    return issues, recommendations


# ============================================================
# ISSUE & RECOMMENDATION CHECKS
# ============================================================


def check_tps(
    metrics: AnalyzedMetrics, issues: list[Issue], recommendations: list[Recommendation]
) -> None:
    tps = metrics.performance.tps
    if tps.status != "critical":
        return
    issues.append(
        Issue(
            severity="critical",
            category="Performance",
            title="Critically Low TPS",
            description=(
                f"Server TPS is {tps.value:.2f}, significantly below the optimal 20.0"
            ),
            impact="Players experience severe lag and delayed block updates",
        )
    )
    recommendations.append(
        Recommendation(
            priority="high",
            category="Performance",
            title="Immediate TPS Optimization Required",
            description=(
                "Your server is running critically slow. Focus on these high-impact fixes first."
            ),
            expected_improvement="Could improve TPS by 5-10 points",
            steps=[
                "Reduce entity count (see entity recommendations)",
                "Optimize redstone contraptions",
                "Limit hopper chains",
                "Consider upgrading server hardware",
            ],
        )
    )


def check_mspt(
    metrics: AnalyzedMetrics,
    issues: list[Issue],
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> None:
    # Tick time only yields an issue; entity/TPS recommendations cover remediation.
    mspt = metrics.performance.mspt
    if mspt.status == "good":
        return
    if mspt.value > thresholds.mspt_critical_issue_ms:
        issues.append(
            Issue(
                severity="critical",
                category="Performance",
                title="Extremely High Tick Time",
                description=(
                    f"Server is taking {mspt.value:.1f}ms per tick (should be under 50ms)"
                ),
                impact="Server cannot maintain 20 TPS, causing severe lag",
            )
        )
    elif mspt.value > thresholds.mspt_warning_issue_ms:
        issues.append(
            Issue(
                severity="warning",
                category="Performance",
                title="High Tick Time",
                description=f"Server is taking {mspt.value:.1f}ms per tick (ideal: under 40ms)",
                impact="Server may struggle under load",
            )
        )


def suggest_heap_size_gb(heap_max_bytes: int, growth_factor: float = 1.5) -> int:
    """Suggested -Xmx in whole GB: current max scaled by ``growth_factor``, rounded up."""
    return math.ceil(heap_max_bytes / BYTES_PER_GB * growth_factor)


def check_memory(
    resolved: ResolvedMetrics,
    issues: list[Issue],
    recommendations: list[Recommendation],
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> None:
    usage = resolved.memory_usage
    if usage > thresholds.memory_critical_issue_percentage:
        heap_max = resolved.heap_max_bytes or 0
        issues.append(
            Issue(
                severity="critical",
                category="Memory",
                title="Critical Memory Usage",
                description=f"Memory usage at {usage:.1f}% - dangerously close to maximum",
                impact="Server may crash or experience severe GC pauses",
            )
        )
        recommendations.append(
            Recommendation(
                priority="high",
                category="Memory",
                title="Increase Memory Allocation",
                description="Allocate more RAM to prevent crashes",
                expected_improvement="Prevent crashes and reduce GC pauses by 50%+",
                steps=[
                    f"Increase -Xmx from {heap_max / BYTES_PER_GB:.1f}GB to at least "
                    f"{suggest_heap_size_gb(heap_max, thresholds.heap_growth_factor)}GB",
                    "Use Aikar's flags for optimal GC",
                    "Monitor memory usage after changes",
                ],
            )
        )
    elif usage > thresholds.memory_warning_issue_percentage:
        issues.append(
            Issue(
                severity="warning",
                category="Memory",
                title="High Memory Usage",
                description=f"Memory usage at {usage:.1f}%",
                impact="May cause frequent garbage collection pauses",
            )
        )


def check_garbage_collection(
    snapshot: Snapshot,
    issues: list[Issue],
    recommendations: list[Recommendation],
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> None:
    """One issue and one recommendation per collector with long average pauses."""
    gc_stats = snapshot.system_statistics.gc
    if not gc_stats:
        return
    for gc_name, stats in gc_stats.items():
        if stats.avg_time <= thresholds.gc_pause_warning_ms:
            continue
        issues.append(
            Issue(
                severity="warning",
                category="Memory",
                title="Long GC Pauses",
                description=f"{gc_name} taking {stats.avg_time:.1f}ms on average",
                impact="Causes periodic lag spikes",
            )
        )
        recommendations.append(
            Recommendation(
                priority="medium",
                category="Memory",
                title="Optimize Garbage Collection",
                description="Tune JVM flags to reduce GC pause times",
                expected_improvement="Reduce lag spikes by 30-50%",
                steps=[
                    "Use G1GC with optimal flags",
                    "Consider using Aikar's flags",
                    "Increase heap size if needed",
                ],
            )
        )


def check_cpu(
    resolved: ResolvedMetrics,
    issues: list[Issue],
    recommendations: list[Recommendation],
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> None:
    if resolved.cpu <= thresholds.cpu_critical_issue_percentage:
        return
    issues.append(
        Issue(
            severity="critical",
            category="CPU",
            title="Critical CPU Usage",
            description=f"CPU usage at {resolved.cpu:.1f}%",
            impact="Server is CPU-bottlenecked, limiting performance",
        )
    )
    recommendations.append(
        Recommendation(
            priority="high",
            category="CPU",
            title="Reduce CPU Load",
            description="Optimize server operations to reduce CPU usage",
            expected_improvement="Improve overall server responsiveness",
            steps=[
                "Reduce entity count",
                "Optimize redstone circuits",
                "Limit chunk loading",
                "Consider better CPU or multi-threading plugins",
            ],
        )
    )


# ============================================================
# SCORING
# ============================================================


def _status_penalty(status: MetricStatus, penalty: tuple[int, int]) -> int:
    critical, warning = penalty
    if status == "critical":
        return critical
    if status == "warning":
        return warning
    return 0


def calculate_overall_score(
    metrics: AnalyzedMetrics,
    issues: list[Issue],
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> int:
    """Score 0-100: status deductions plus a deduction per critical/warning issue.

    Metric-driven issues are penalized twice (once by status, once as an
    issue). Existing scores depend on this, so the weights stay as they are.
    """
    t = thresholds
    score = 100
    score -= _status_penalty(metrics.performance.tps.status, t.tps_penalty)
    score -= _status_penalty(metrics.performance.mspt.status, t.mspt_penalty)
    score -= _status_penalty(metrics.performance.cpu.status, t.cpu_penalty)
    score -= _status_penalty(metrics.memory.status, t.memory_penalty)
    score -= _status_penalty(metrics.entities.status, t.entities_penalty)

    critical_count = sum(1 for issue in issues if issue.severity == "critical")
    warning_count = sum(1 for issue in issues if issue.severity == "warning")
    score -= critical_count * t.critical_issue_penalty
    score -= warning_count * t.warning_issue_penalty

    return max(0, min(100, score))


# ============================================================
# ENTRY POINT
# ============================================================


def analyze(
    snapshot: Snapshot, thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS
) -> AnalysisResult:
    """Run every check against ``snapshot`` and build the report."""
    world_stats = snapshot.world_statistics
    resolved = resolve_metrics(snapshot)
    problematic_chunks = find_problematic_chunks(world_stats, thresholds.chunk_entity_warning_count)
    metrics = build_analyzed_metrics(resolved, len(problematic_chunks), thresholds)

    issues: list[Issue] = []
    recommendations: list[Recommendation] = []

    check_tps(metrics, issues, recommendations)
    check_mspt(metrics, issues, thresholds)
    check_memory(resolved, issues, recommendations, thresholds)
    check_garbage_collection(snapshot, issues, recommendations, thresholds)
    if world_stats is not None:
        entity_issues, entity_recommendations = analyze_entities(world_stats, thresholds)
        issues.extend(entity_issues)
        recommendations.extend(entity_recommendations)
    check_cpu(resolved, issues, recommendations, thresholds)

    return AnalysisResult(
        overall_score=calculate_overall_score(metrics, issues, thresholds),
        issues=issues,
        recommendations=recommendations,
        metrics=metrics,
    )
