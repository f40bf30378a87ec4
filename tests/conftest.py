"""Shared fixtures: raw spark profile documents."""

from __future__ import annotations

from typing import Any

import pytest

from spark_analyze.models import Snapshot


def build_document(
    *,
    tps: float | None = 20.0,
    mspt: float | None = 20.0,
    cpu: float | None = 10.0,
    heap_used: int | None = 1,
    heap_max: int | None = 10,
    gc: dict[str, dict[str, float]] | None = None,
    world: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a raw profile document; defaults describe a healthy server."""
    system_statistics: dict[str, Any] = {
        "cpu": {
            "threads": 8,
            "processUsage": {"last1m": cpu, "last15m": cpu},
            "systemUsage": {"last1m": 20.0, "last15m": 20.0},
        },
        "memory": {
            "heap": {"used": heap_used, "committed": heap_max, "max": heap_max},
            "pools": {},
        },
        "tps": {"last1m": tps, "last5m": tps, "last15m": tps},
        "mspt": {
            "last1m": {"mean": mspt, "min": 1.0, "max": 80.0, "median": mspt, "percentile95": 60.0}
        },
        "java": {"vendor": "Eclipse Adoptium", "version": "21.0.2"},
    }
    if gc is not None:
        system_statistics["gc"] = gc

    document: dict[str, Any] = {
        "type": "sampler",
        "metadata": {
            "user": {"name": "Server", "uniqueId": "00000000-0000-0000-0000-000000000000"},
            "startTime": 1700000000000,
            "interval": 4,
            "platform": {
                "type": "SERVER",
                "name": "Paper",
                "version": "1.20.4-496",
                "minecraftVersion": "1.20.4",
            },
            "systemStatistics": system_statistics,
        },
    }
    if world is not None:
        document["platformStatistics"] = {"playerCount": 12, "world": world}
    return document


def build_world(
    *,
    total_entities: int = 0,
    entities: dict[str, int] | None = None,
    chunk_counts: list[int] | None = None,
    world_name: str = "world",
) -> dict[str, Any]:
    """World statistics with one region holding one chunk per count."""
    chunks = [
        {"x": index * 10, "z": -index, "entityCount": count}
        for index, count in enumerate(chunk_counts or [])
    ]
    return {
        "totalEntities": total_entities,
        "entities": entities or {},
        "worlds": [
            {
                "name": world_name,
                "totalEntities": total_entities,
                "regions": [{"x": 0, "z": 0, "chunks": chunks}],
            }
        ],
    }


@pytest.fixture
def healthy_document() -> dict[str, Any]:
    return build_document()


@pytest.fixture
def healthy_snapshot(healthy_document: dict[str, Any]) -> Snapshot:
    return Snapshot.model_validate(healthy_document)


@pytest.fixture
def troubled_snapshot() -> Snapshot:
    """Every check fires."""
    return Snapshot.model_validate(
        build_document(
            tps=12.0,
            mspt=120.0,
            cpu=95.0,
            heap_used=9_500_000_000,
            heap_max=10_000_000_000,
            gc={
                "G1 Young Generation": {"total": 500, "avgTime": 150.0, "avgFrequency": 2000},
                "G1 Old Generation": {"total": 2, "avgTime": 40.0, "avgFrequency": 90000},
            },
            world=build_world(
                total_entities=16000,
                entities={"minecraft:item": 4000, "minecraft:cow": 900, "minecraft:zombie": 700},
                chunk_counts=[50, 300, 150],
            ),
        )
    )
