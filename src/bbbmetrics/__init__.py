"""bbbmetrics - BigBlueButton metrics collector.

Polls a BigBlueButton server's API, aggregates meeting and recording counters
(optionally broken down by meeting metadata) and emits them as measurements
for a metrics pipeline.
"""

__version__ = "0.1.0"

from bbbmetrics.aggregator import (
    Aggregate,
    AggregationResult,
    accumulate_meeting,
    accumulate_recording,
    aggregate,
)
from bbbmetrics.config import Config
from bbbmetrics.emitter import build_measurements, publish, to_fields
from bbbmetrics.health import map_health
from bbbmetrics.metadata import extract_metadata
from bbbmetrics.models import HealthCheck, Meeting, Recording

__all__ = [
    # Records
    "Meeting",
    "Recording",
    "HealthCheck",
    # Aggregation
    "Aggregate",
    "AggregationResult",
    "accumulate_meeting",
    "accumulate_recording",
    "aggregate",
    "extract_metadata",
    "map_health",
    # Emission
    "to_fields",
    "build_measurements",
    "publish",
    "Config",
]
