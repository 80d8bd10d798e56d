from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional

from opentelemetry import metrics
from opentelemetry.metrics import Histogram

# These will use whatever meter provider the application has configured.
# If none is configured, they are no-ops.
meter = metrics.get_meter("meshcall.core")

negotiation_latency_ms = meter.create_histogram(
    "peer_link.negotiation.latency.ms",
    unit="ms",
    description="Time from PeerLink creation until it becomes stable",
)
peer_links_active = meter.create_up_down_counter(
    "peer_link.active", description="Open PeerLinks"
)
peer_link_failures = meter.create_counter(
    "peer_link.failures", description="PeerLinks closed because of an error"
)
signaling_messages_received = meter.create_counter(
    "signaling.messages.received", description="Relay frames received"
)
signaling_messages_dropped = meter.create_counter(
    "signaling.messages.dropped",
    description="Relay frames dropped as malformed or for unknown participants",
)


class Timer:
    """
    Records the elapsed time into a histogram, once:

        timer = Timer(hist, {"role": "initiator"})
        ...
        timer.stop({"outcome": "stable"})
    """

    def __init__(
        self, hist: Histogram, attributes: Optional[Mapping[str, Any]] = None
    ) -> None:
        self._hist = hist
        self._base_attrs: Dict[str, Any] = dict(attributes or {})
        self._start_ns = time.perf_counter_ns()
        self._stopped = False
        self.last_elapsed_ms: Optional[float] = None

    def stop(self, extra_attributes: Optional[Mapping[str, Any]] = None) -> float:
        """Idempotent: records only once."""
        if not self._stopped:
            self._stopped = True
            elapsed = self.elapsed_ms()
            self.last_elapsed_ms = elapsed
            attrs = {**self._base_attrs}
            if extra_attributes:
                attrs.update(dict(extra_attributes))
            self._hist.record(elapsed, attributes=attrs)
        return self.last_elapsed_ms or 0.0

    def elapsed_ms(self) -> float:
        return (time.perf_counter_ns() - self._start_ns) / 1_000_000.0
