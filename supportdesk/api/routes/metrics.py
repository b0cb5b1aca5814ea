from fastapi import APIRouter, Response

from supportdesk.dependencies.support import MetricsRegistryDep
from supportdesk.metrics.exporters import CONTENT_TYPE, PrometheusExporter

router = APIRouter(tags=["metrics"])


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def prometheus_metrics(registry: MetricsRegistryDep) -> Response:
    payload = PrometheusExporter(registry).build_payload()
    return Response(content=payload, media_type=CONTENT_TYPE)
