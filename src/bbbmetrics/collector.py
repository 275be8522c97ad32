"""Poll cycle for bbbmetrics.

One cycle fetches meetings, recordings and the health status, aggregates them
and publishes the measurements:

    getMeetings ─┐
    getRecordings ├─> aggregate() ─> publish() ─> sink
    health check ─┘

A cycle is all or nothing. If any fetch fails the error propagates and the
sink receives nothing for that cycle.
"""

from __future__ import annotations

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from bbbmetrics.aggregator import AggregationResult, aggregate
from bbbmetrics.api import BigBlueButtonClient
from bbbmetrics.emitter import make_sink, publish
from bbbmetrics.health import map_health

if TYPE_CHECKING:
    from bbbmetrics.config import Config
    from bbbmetrics.models import HealthCheck, Meeting, Recording

logger = logging.getLogger(__name__)


class Collector:
    """Runs poll cycles against one BigBlueButton server."""

    def __init__(self, config: Config, client=None, sink=None):
        """Initialize the collector.

        Args:
            config: The bbbmetrics configuration.
            client: Object providing fetch_meetings, fetch_recordings and
                fetch_health. Defaults to a BigBlueButtonClient built from
                the configuration.
            sink: Object with an ``emit`` method. Defaults to the configured
                output format on stdout.

        Raises:
            ValueError: If the configuration is incomplete.
        """
        self.config = config
        self.metadata_keys = list(config.bigbluebutton.gather_by_metadata)
        self.parallel_fetch = config.daemon.parallel_fetch

        self._owns_client = client is None
        if client is None:
            client = BigBlueButtonClient(config.bigbluebutton)
        self.client = client

        if sink is None:
            sink = make_sink(config.output.format, sys.stdout)
        self.sink = sink

    def fetch(self) -> tuple[list[Meeting], list[Recording], HealthCheck]:
        """Fetch the three inputs of a cycle.

        Raises:
            TransportError: If any of the three calls fails.
        """
        if not self.parallel_fetch:
            return (
                self.client.fetch_meetings(),
                self.client.fetch_recordings(),
                self.client.fetch_health(),
            )

        with ThreadPoolExecutor(max_workers=3) as executor:
            meetings = executor.submit(self.client.fetch_meetings)
            recordings = executor.submit(self.client.fetch_recordings)
            health = executor.submit(self.client.fetch_health)
            return meetings.result(), recordings.result(), health.result()

    def gather(self, timestamp: int | None = None) -> AggregationResult:
        """Run one full cycle and publish its measurements.

        Args:
            timestamp: Timestamp in nanoseconds for every measurement of the
                cycle. Defaults to now.

        Returns:
            The aggregation result that was published.

        Raises:
            TransportError: If fetching failed. Nothing is emitted.
        """
        meetings, recordings, health = self.fetch()
        if not map_health(health):
            logger.warning(
                "BigBlueButton API health check returned %r", health.return_code
            )

        result = aggregate(
            meetings, recordings, health, self.metadata_keys, parallel=self.parallel_fetch
        )
        count = publish(result, self.sink, timestamp)

        logger.info(
            "Gathered %d meetings, %d participants, %d recordings; emitted %d measurement(s)",
            result.total.meetings,
            result.total.participants,
            result.total.recordings,
            count,
        )
        return result

    def close(self) -> None:
        """Close the HTTP session of a client this collector created."""
        if self._owns_client:
            self.client.close()
