from ecs_exporter.exposition.catalog import (
    CATALOG_VERSION,
    SnapshotCollector,
    build_families,
    render_catalog,
    render_snapshot,
)
from ecs_exporter.exposition.encoder import CONTENT_TYPE, inject_label
from ecs_exporter.exposition.selfmetrics import ExporterMetrics

__all__ = [
    "CATALOG_VERSION",
    "CONTENT_TYPE",
    "ExporterMetrics",
    "SnapshotCollector",
    "build_families",
    "inject_label",
    "render_catalog",
    "render_snapshot",
]
