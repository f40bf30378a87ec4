"""Data models for spark profile analysis.

Input models mirror the raw JSON document produced by the spark profiler
viewer (``https://spark.lucko.me/<code>?raw=1``). Every field is optional so
that partial or older exports still parse; the analyzer applies its own
fallbacks. Output models describe the diagnostic report.
"""

from __future__ import annotations

from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ============================================================
# TYPE ALIASES
# ============================================================

MetricStatus: TypeAlias = Literal["good", "warning", "critical"]
IssueSeverity: TypeAlias = Literal["critical", "warning", "info"]
RecommendationPriority: TypeAlias = Literal["high", "medium", "low"]
BytesValue: TypeAlias = int
PercentageValue: TypeAlias = float


class _SnapshotModel(BaseModel):
    """Base for raw profile models: camelCase aliases, unknown keys ignored.

    Explicit ``null`` values are treated as absent, so every field falls back
    to its default.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_null_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class _ResultModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ============================================================
# SNAPSHOT (INPUT)
# ============================================================


class UsageAverages(_SnapshotModel):
    """Rolling CPU usage averages, in percent."""

    last1m: PercentageValue | None = None
    last15m: PercentageValue | None = None


class CPUStatistics(_SnapshotModel):
    threads: int | None = None
    system_usage: UsageAverages | None = Field(default=None, alias="systemUsage")
    process_usage: UsageAverages | None = Field(default=None, alias="processUsage")


class MemoryPool(_SnapshotModel):
    used: BytesValue | None = None
    committed: BytesValue | None = None
    max: BytesValue | None = None


class MemoryStatistics(_SnapshotModel):
    heap: MemoryPool | None = None
    non_heap: MemoryPool | None = Field(default=None, alias="nonHeap")
    pools: dict[str, MemoryPool] = Field(default_factory=dict)


class GCStatistics(_SnapshotModel):
    """Per-collector statistics; times are in milliseconds."""

    total: int = 0
    avg_time: float = Field(default=0.0, alias="avgTime")
    avg_frequency: float = Field(default=0.0, alias="avgFrequency")


class TPSStatistics(_SnapshotModel):
    last1m: float | None = None
    last5m: float | None = None
    last15m: float | None = None


class MSPTDistribution(_SnapshotModel):
    mean: float | None = None
    min: float | None = None
    max: float | None = None
    median: float | None = None
    percentile95: float | None = None


class MSPTStatistics(_SnapshotModel):
    last1m: MSPTDistribution | None = None
    last5m: MSPTDistribution | None = None


class PingDistribution(_SnapshotModel):
    avg: float | None = None
    median: float | None = None
    percentile95: float | None = None


class PingStatistics(_SnapshotModel):
    last15m: PingDistribution | None = None


class DiskStatistics(_SnapshotModel):
    total: BytesValue | None = None
    used: BytesValue | None = None


class OSInfo(_SnapshotModel):
    arch: str | None = None
    name: str | None = None
    version: str | None = None


class JavaInfo(_SnapshotModel):
    vendor: str | None = None
    version: str | None = None
    vendor_version: str | None = Field(default=None, alias="vendorVersion")


class SystemStatistics(_SnapshotModel):
    cpu: CPUStatistics | None = None
    memory: MemoryStatistics | None = None
    gc: dict[str, GCStatistics] | None = None
    disk: DiskStatistics | None = None
    os: OSInfo | None = None
    java: JavaInfo | None = None
    tps: TPSStatistics | None = None
    mspt: MSPTStatistics | None = None
    ping: PingStatistics | None = None
    player_count: int | None = Field(default=None, alias="playerCount")


class PlatformInfo(_SnapshotModel):
    type: str | None = None
    name: str | None = None
    version: str | None = None
    minecraft_version: str | None = Field(default=None, alias="minecraftVersion")


class ProfileUser(_SnapshotModel):
    name: str | None = None
    unique_id: str | None = Field(default=None, alias="uniqueId")


class SnapshotMetadata(_SnapshotModel):
    user: ProfileUser | None = None
    platform: PlatformInfo | None = None
    system_statistics: SystemStatistics | None = Field(default=None, alias="systemStatistics")


class Chunk(_SnapshotModel):
    x: int = 0
    z: int = 0
    entity_count: int = Field(default=0, alias="entityCount")
    entities: dict[str, int] = Field(default_factory=dict)


class Region(_SnapshotModel):
    x: int | None = None
    z: int | None = None
    chunks: list[Chunk] = Field(default_factory=list)


class World(_SnapshotModel):
    name: str = ""
    total_entities: int | None = Field(default=None, alias="totalEntities")
    regions: list[Region] | None = None


class WorldStatistics(_SnapshotModel):
    total_entities: int = Field(default=0, alias="totalEntities")
    total_chunks: int | None = Field(default=None, alias="totalChunks")
    entities: dict[str, int] = Field(default_factory=dict)
    worlds: list[World] = Field(default_factory=list)


class PlatformStatistics(_SnapshotModel):
    memory: MemoryStatistics | None = None
    player_count: int | None = Field(default=None, alias="playerCount")
    world: WorldStatistics | None = None


class Snapshot(_SnapshotModel):
    """A single point-in-time profile document."""

    type: str | None = None
    metadata: SnapshotMetadata | None = None
    platform_statistics: PlatformStatistics | None = Field(
        default=None, alias="platformStatistics"
    )

    @property
    def system_statistics(self) -> SystemStatistics:
        if self.metadata is None or self.metadata.system_statistics is None:
            return SystemStatistics()
        return self.metadata.system_statistics

    @property
    def world_statistics(self) -> WorldStatistics | None:
        if self.platform_statistics is None:
            return None
        return self.platform_statistics.world


# ============================================================
# THRESHOLDS
# ============================================================


class DiagnosticThresholds(BaseModel):
    """Fixed diagnostic thresholds and score weights."""

    model_config = ConfigDict(frozen=True)

    # Metric classification (good bound, warning bound)
    tps_good: float = 19.5
    tps_warning: float = 18.0
    mspt_good_ms: float = 40.0
    mspt_warning_ms: float = 50.0
    cpu_good_percentage: float = 70.0
    cpu_warning_percentage: float = 85.0
    memory_good_percentage: float = 70.0
    memory_warning_percentage: float = 85.0
    entities_good: int = 5000
    entities_warning: int = 10000

    # Issue derivation
    mspt_critical_issue_ms: float = 100.0
    mspt_warning_issue_ms: float = 50.0
    memory_critical_issue_percentage: float = 90.0
    memory_warning_issue_percentage: float = 80.0
    heap_growth_factor: float = 1.5
    gc_pause_warning_ms: float = 100.0
    cpu_critical_issue_percentage: float = 90.0

    # Entity sub-analysis
    entities_critical_issue: int = 15000
    entities_warning_issue: int = 10000
    entities_recommended_max: int = 5000
    entity_type_warning_count: int = 500
    chunk_entity_warning_count: int = 100
    chunk_runner_up_count: int = 2

    # Score weights: (critical, warning) deductions
    tps_penalty: tuple[int, int] = (30, 15)
    mspt_penalty: tuple[int, int] = (20, 10)
    cpu_penalty: tuple[int, int] = (15, 8)
    memory_penalty: tuple[int, int] = (15, 8)
    entities_penalty: tuple[int, int] = (10, 5)
    critical_issue_penalty: int = 5
    warning_issue_penalty: int = 2


# ============================================================
# ANALYSIS RESULT (OUTPUT)
# ============================================================


class Issue(_ResultModel):
    severity: IssueSeverity
    category: str
    title: str
    description: str
    impact: str


class Recommendation(_ResultModel):
    priority: RecommendationPriority
    category: str
    title: str
    description: str
    expected_improvement: str = Field(alias="expectedImprovement")
    steps: list[str] | None = None


class MetricReading(_ResultModel):
    value: float
    status: MetricStatus


class PerformanceMetrics(_ResultModel):
    tps: MetricReading
    mspt: MetricReading
    cpu: MetricReading


class MemoryMetrics(_ResultModel):
    usage: PercentageValue
    status: MetricStatus


class EntityMetrics(_ResultModel):
    total: int
    problematic_chunks: int = Field(alias="problematicChunks")
    status: MetricStatus


class AnalyzedMetrics(_ResultModel):
    performance: PerformanceMetrics
    memory: MemoryMetrics
    entities: EntityMetrics


class ProblematicChunk(_ResultModel):
    """A chunk whose entity count exceeds the overload threshold."""

    world: str
    x: int
    z: int
    count: int


class AnalysisResult(_ResultModel):
    overall_score: int = Field(ge=0, le=100, alias="overallScore")
    issues: list[Issue] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    metrics: AnalyzedMetrics

    @property
    def critical_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "critical")

    @property
    def warning_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "warning")
