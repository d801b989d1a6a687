"""Prometheus gauge registry for per-backend rates.

Wraps a labeled gauge on a private CollectorRegistry so the exporter only
serves its own series. prometheus_client metrics lock internally, so the
HTTP server thread can collect while the poll thread writes.
"""

import logging
from typing import List, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from reconciler import BackendKey, ReconcileResult

logger = logging.getLogger(__name__)

RPS_METRIC = "http_rps_per_backend"
FETCH_STAGE = "fetch"
DECODE_STAGE = "decode"


class GaugeRegistry:
    """Store of exposed per-backend rates keyed by (upstream, server)."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Create the metrics on the given registry.

        Args:
            registry: Registry to register on; a fresh one if omitted
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        self._rps = Gauge(
            RPS_METRIC,
            "Requests per second on each nginx backend",
            ["upstream", "server"],
            registry=self.registry,
        )
        self._scrape_failures = Counter(
            "vts_exporter_scrape_failures",
            "Polling cycles skipped because the status document could not be used",
            ["stage"],
            registry=self.registry,
        )
        self._last_success = Gauge(
            "vts_exporter_last_success_timestamp_seconds",
            "Unix time of the last successful reconciliation",
            registry=self.registry,
        )
        self._backends = Gauge(
            "vts_exporter_backends",
            "Backends present in the last successful snapshot",
            registry=self.registry,
        )

        # Pre-create both stages so the counters are exported as 0
        for stage in (FETCH_STAGE, DECODE_STAGE):
            self._scrape_failures.labels(stage=stage)

    def set(self, group: str, server: str, value: float) -> None:
        self._rps.labels(upstream=group, server=server).set(value)

    def delete(self, group: str, server: str) -> None:
        """Stop exporting a backend. Deleting an absent backend is a no-op."""
        try:
            self._rps.remove(group, server)
        except KeyError:
            pass

    def apply(self, result: ReconcileResult) -> None:
        """Publish a reconciliation's updates and retirals."""
        for (group, server), value in result.updates.items():
            self.set(group, server, value)
        for group, server in result.retirals:
            logger.info(f"Retiring metric for upstream={group} server={server}")
            self.delete(group, server)

    def get(self, group: str, server: str) -> Optional[float]:
        """Currently exported rate for a backend, or None if not exported."""
        return self.registry.get_sample_value(
            RPS_METRIC, {"upstream": group, "server": server}
        )

    def keys(self) -> List[BackendKey]:
        """(upstream, server) pairs currently exported."""
        keys: List[Tuple[str, str]] = []
        for metric in self._rps.collect():
            for sample in metric.samples:
                keys.append((sample.labels["upstream"], sample.labels["server"]))
        return sorted(keys)

    def record_failure(self, stage: str) -> None:
        self._scrape_failures.labels(stage=stage).inc()

    def record_success(self, timestamp: float, backend_count: int) -> None:
        self._last_success.set(timestamp)
        self._backends.set(backend_count)

    def exposition(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)
