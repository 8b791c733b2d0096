from collections.abc import Callable

from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader

from epg_operator.logger import init_logger

logger = init_logger(__name__)


class MetricsConstants:
    RECONCILE_TOTAL = "epgconf_reconcile_total"
    RECONCILE_ERRORS = "epgconf_reconcile_errors_total"
    RECONCILE_DURATION = "epgconf_reconcile_duration_seconds"
    WORKQUEUE_DEPTH = "epgconf_workqueue_depth"


class OperatorMetrics:
    """Reconcile counters exported through the OpenTelemetry SDK.

    By default the Prometheus reader is used, which exposes the instruments on
    prometheus_client's default registry for the /metrics endpoint.
    """

    def __init__(self, metric_reader: MetricReader | None = None):
        self.metric_reader = metric_reader or PrometheusMetricReader()
        self._provider = MeterProvider(metric_readers=[self.metric_reader])
        meter = self._provider.get_meter("epg_operator")
        self._queue_depth: Callable[[], int] = lambda: 0

        self.reconcile_total = meter.create_counter(
            MetricsConstants.RECONCILE_TOTAL, description="Number of EpgConf reconciles by result"
        )
        self.reconcile_errors = meter.create_counter(
            MetricsConstants.RECONCILE_ERRORS, description="Number of failed reconcile steps by step"
        )
        self.reconcile_duration = meter.create_histogram(
            MetricsConstants.RECONCILE_DURATION, unit="s", description="Time spent in one reconcile"
        )
        meter.create_observable_gauge(
            MetricsConstants.WORKQUEUE_DEPTH,
            callbacks=[self._observe_queue_depth],
            description="Keys waiting to be reconciled",
        )

    def _observe_queue_depth(self, options: CallbackOptions):
        yield Observation(self._queue_depth())

    def bind_queue_depth(self, depth: Callable[[], int]) -> None:
        self._queue_depth = depth

    def record_reconcile(self, result: str, duration_seconds: float) -> None:
        self.reconcile_total.add(1, {"result": result})
        self.reconcile_duration.record(duration_seconds)

    def record_step_error(self, step: str) -> None:
        self.reconcile_errors.add(1, {"step": step})

    def shutdown(self) -> None:
        try:
            self._provider.shutdown()
        except Exception as e:
            logger.warning(f"Failed to shutdown meter provider: {e}")
