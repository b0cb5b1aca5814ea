"""Prometheus text exposition of the metrics registry."""
from __future__ import annotations

import logging

from .base import CounterMetric, LabelValues, Metric
from .registry import MetricsRegistry

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _label_text(metric: Metric, values: LabelValues) -> str:
    if not values:
        return ""
    pairs = ",".join(f'{name}="{_escape(value)}"' for name, value in zip(metric.label_names, values))
    return "{" + pairs + "}"


class PrometheusExporter:
    def __init__(self, registry: MetricsRegistry) -> None:
        self.registry = registry

    def build_payload(self) -> str:
        lines: list[str] = []
        for metric in self.registry.metrics():
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for label_values, values in sorted(metric.snapshot().items()):
                labels = _label_text(metric, label_values)
                if isinstance(metric, CounterMetric):
                    lines.append(f"{metric.name}{labels} {values['value']}")
                else:
                    lines.append(f"{metric.name}_count{labels} {values['count']}")
                    lines.append(f"{metric.name}_sum{labels} {values['sum']}")
        payload = "\n".join(lines) + "\n"
        logger.debug("Rendered %d metric families", len(self.registry.metrics()))
        return payload
