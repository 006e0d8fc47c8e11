"""Prometheus metrics for one batch run."""

from __future__ import annotations

from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile


class RunMetrics:
    """Collectors bound to a private registry so runs never share counters."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.remote_calls = Counter(
            "ashr_remote_calls",
            "Remote record store calls issued",
            labelnames=("operation",),
            registry=self.registry,
        )
        self.files_compressed = Counter(
            "ashr_files_compressed",
            "Attachments replaced by a recompressed JPEG",
            registry=self.registry,
        )
        self.bytes_saved = Counter(
            "ashr_bytes_saved",
            "Bytes saved by recompression",
            registry=self.registry,
        )
        self.images_deleted = Counter(
            "ashr_images_deleted",
            "Image attachments removed by retention pruning",
            registry=self.registry,
        )
        self.errors = Counter(
            "ashr_errors",
            "Per-file and per-record failures",
            labelnames=("phase",),
            registry=self.registry,
        )
        self.last_processed_id = Gauge(
            "ashr_last_processed_id",
            "Highest record id visited by the compression pass",
            registry=self.registry,
        )
        self.compression_seconds = Histogram(
            "ashr_compression_seconds",
            "Time spent re-encoding one attachment",
            registry=self.registry,
        )

    def write(self, path: Path) -> None:
        """Write the registry in the node-exporter textfile format."""
        path.parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), self.registry)


__all__ = ["RunMetrics"]
