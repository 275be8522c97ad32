"""Measurement emission for aggregation results.

Each cycle produces one ``bigbluebutton`` measurement for the whole server and
one ``<value>:bigbluebutton`` measurement per metadata value. All of them share
the nine canonical integer fields of ``Aggregate``.

Sinks write measurements either as InfluxDB line protocol, which telegraf's
``exec``/``execd`` inputs consume directly, or as JSON lines.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from bbbmetrics.aggregator import Aggregate, AggregationResult

GLOBAL_MEASUREMENT = "bigbluebutton"

FIELD_NAMES = (
    "meetings",
    "participants",
    "listener_participants",
    "voice_participants",
    "video_participants",
    "active_recordings",
    "recordings",
    "published_recordings",
    "online",
)

OUTPUT_FORMATS = ("influx", "json")


def metadata_measurement_name(value: str) -> str:
    """Measurement name for the breakdown of one metadata value."""
    return f"{value}:{GLOBAL_MEASUREMENT}"


def to_fields(agg: Aggregate) -> dict[str, int]:
    """Flatten an aggregate into the field mapping a sink expects."""
    return {name: int(getattr(agg, name)) for name in FIELD_NAMES}


def _escape_measurement(name: str) -> str:
    # Line protocol has no escape for line breaks; write them as literal \n and
    # \r so a metadata value can never start a new line.
    return (
        name.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace(",", "\\,")
        .replace(" ", "\\ ")
    )


def _escape_key(key: str) -> str:
    return _escape_measurement(key).replace("=", "\\=")


@dataclass
class Measurement:
    """A named set of integer fields with optional tags and a timestamp.

    Attributes:
        name: Measurement name.
        fields: Field name -> non-negative integer value.
        tags: Tag name -> value. Empty for the measurements we produce.
        timestamp: Nanoseconds since the epoch, or None to let the consumer
            assign one.
    """

    name: str
    fields: dict[str, int]
    tags: dict[str, str] = field(default_factory=dict)
    timestamp: int | None = None

    def to_line(self) -> str:
        """Format as a single InfluxDB line protocol line."""
        head = _escape_measurement(self.name)
        if head.startswith("#"):
            # would otherwise read as a comment line
            head = "\\" + head
        for key in sorted(self.tags):
            head += f",{_escape_key(key)}={_escape_key(self.tags[key])}"

        field_set = ",".join(f"{_escape_key(k)}={v}i" for k, v in self.fields.items())
        line = f"{head} {field_set}"
        if self.timestamp is not None:
            line += f" {self.timestamp}"
        return line

    def to_json(self) -> str:
        """Serialize to a compact JSON object."""
        data = {"name": self.name, "fields": self.fields, "tags": self.tags}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return json.dumps(data, separators=(",", ":"))


def build_measurements(
    result: AggregationResult, timestamp: int | None = None
) -> list[Measurement]:
    """Turn an aggregation result into measurements.

    Args:
        result: The ``(total, by_metadata)`` pair of one cycle.
        timestamp: Shared timestamp in nanoseconds for every measurement.

    Returns:
        The global measurement first, then one per metadata value sorted by
        value.
    """
    total, by_metadata = result
    measurements = [Measurement(GLOBAL_MEASUREMENT, to_fields(total), timestamp=timestamp)]
    for value in sorted(by_metadata):
        measurements.append(
            Measurement(
                metadata_measurement_name(value),
                to_fields(by_metadata[value]),
                timestamp=timestamp,
            )
        )
    return measurements


class LineProtocolSink:
    """Writes measurements as InfluxDB line protocol to a text stream."""

    def __init__(self, stream: IO[str]):
        self.stream = stream

    def emit(
        self,
        measurement_name: str,
        fields: Mapping[str, int],
        tags: Mapping[str, str] | None = None,
        timestamp: int | None = None,
    ) -> None:
        measurement = Measurement(measurement_name, dict(fields), dict(tags or {}), timestamp)
        self.stream.write(measurement.to_line() + "\n")
        self.stream.flush()


class JsonLinesSink:
    """Writes measurements as one JSON object per line."""

    def __init__(self, stream: IO[str]):
        self.stream = stream

    def emit(
        self,
        measurement_name: str,
        fields: Mapping[str, int],
        tags: Mapping[str, str] | None = None,
        timestamp: int | None = None,
    ) -> None:
        measurement = Measurement(measurement_name, dict(fields), dict(tags or {}), timestamp)
        self.stream.write(measurement.to_json() + "\n")
        self.stream.flush()


class MemorySink:
    """Keeps emitted measurements in a list."""

    def __init__(self) -> None:
        self.measurements: list[Measurement] = []

    def emit(
        self,
        measurement_name: str,
        fields: Mapping[str, int],
        tags: Mapping[str, str] | None = None,
        timestamp: int | None = None,
    ) -> None:
        self.measurements.append(
            Measurement(measurement_name, dict(fields), dict(tags or {}), timestamp)
        )

    def get(self, measurement_name: str) -> Measurement | None:
        """Return the last measurement emitted under a name."""
        for measurement in reversed(self.measurements):
            if measurement.name == measurement_name:
                return measurement
        return None


def make_sink(output_format: str, stream: IO[str]) -> LineProtocolSink | JsonLinesSink:
    """Create a stream sink for an output format name.

    Raises:
        ValueError: If the format is not one of OUTPUT_FORMATS.
    """
    if output_format == "influx":
        return LineProtocolSink(stream)
    if output_format == "json":
        return JsonLinesSink(stream)
    raise ValueError(
        f"Unknown output format '{output_format}'. "
        f"Valid formats are: {', '.join(OUTPUT_FORMATS)}"
    )


def publish(result: AggregationResult, sink, timestamp: int | None = None) -> int:
    """Emit every measurement of one cycle to a sink.

    Args:
        result: The aggregation result to publish.
        sink: Any object with an ``emit(name, fields, tags, timestamp)`` method.
        timestamp: Shared timestamp in nanoseconds; defaults to now.

    Returns:
        Number of measurements emitted.
    """
    if timestamp is None:
        timestamp = time.time_ns()

    measurements = build_measurements(result, timestamp)
    for measurement in measurements:
        sink.emit(measurement.name, measurement.fields, measurement.tags, measurement.timestamp)
    return len(measurements)
