"""Aggregation of meetings and recordings into counters.

One poll cycle produces a global aggregate plus, when metadata names are
configured, one aggregate per metadata value found on the records.

Usage:
    from bbbmetrics.aggregator import aggregate

    total, by_metadata = aggregate(
        meetings, recordings, health, metadata_keys=["tenant"]
    )
    print(total.participants)
    print(by_metadata["acme"].meetings)

Buckets are keyed by metadata VALUE only. With ``metadata_keys=["tenant",
"origin"]`` a meeting tagged ``tenant=acme`` and a recording tagged
``origin=acme`` both land in the ``acme`` bucket.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, fields
from typing import Any, Iterable, Mapping, NamedTuple, Sequence

from bbbmetrics.health import online_value
from bbbmetrics.metadata import extract_metadata
from bbbmetrics.models import HealthCheck, Meeting, Recording

logger = logging.getLogger(__name__)


@dataclass
class Aggregate:
    """Counters summarizing meetings, recordings and API status for one grouping.

    Attributes:
        meetings: Number of running meetings.
        participants: Sum of participants over all meetings.
        listener_participants: Sum of listen-only participants.
        voice_participants: Sum of participants with voice enabled.
        video_participants: Sum of participants sharing video.
        active_recordings: Number of meetings currently recording.
        recordings: Number of recordings.
        published_recordings: Number of published recordings.
        online: 1 if the API health check succeeded, 0 otherwise.
    """

    meetings: int = 0
    participants: int = 0
    listener_participants: int = 0
    voice_participants: int = 0
    video_participants: int = 0
    active_recordings: int = 0
    recordings: int = 0
    published_recordings: int = 0
    online: int = 0

    def merge(self, other: Aggregate) -> Aggregate:
        """Combine two partial aggregates into a new one.

        Counters are summed. ``online`` is not a counter, the result is online
        if either side is.
        """
        merged = Aggregate(
            **{
                f.name: getattr(self, f.name) + getattr(other, f.name)
                for f in fields(self)
                if f.name != "online"
            }
        )
        merged.online = max(self.online, other.online)
        return merged

    def to_dict(self) -> dict[str, int]:
        """Convert to a field name -> value mapping in canonical order."""
        return asdict(self)

    @classmethod
    def from_fields(cls, data: Mapping[str, Any]) -> Aggregate:
        """Rebuild an aggregate from a field mapping.

        Args:
            data: Mapping using the canonical field names. Unknown keys are
                ignored and missing ones default to zero.

        Raises:
            ValueError: If a value is negative or ``online`` is not 0 or 1.
        """
        known = {f.name for f in fields(cls)}
        values = {k: int(v) for k, v in data.items() if k in known}
        for name, value in values.items():
            if value < 0:
                raise ValueError(f"Counter '{name}' must be non-negative, got {value}")
        if values.get("online", 0) not in (0, 1):
            raise ValueError(f"Field 'online' must be 0 or 1, got {values['online']}")
        return cls(**values)


# metadata value -> aggregate for that value
MetadataKeyedAggregates = dict[str, Aggregate]


class AggregationResult(NamedTuple):
    """The outcome of one aggregation pass: ``(total, by_metadata)``."""

    total: Aggregate
    by_metadata: MetadataKeyedAggregates


def accumulate_meeting(agg: Aggregate, meeting: Meeting) -> None:
    """Add one meeting to an aggregate."""
    agg.meetings += 1
    agg.participants += meeting.participant_count
    agg.listener_participants += meeting.listener_count
    agg.voice_participants += meeting.voice_participant_count
    agg.video_participants += meeting.video_count
    if meeting.is_recording:
        agg.active_recordings += 1


def accumulate_recording(agg: Aggregate, recording: Recording) -> None:
    """Add one recording to an aggregate."""
    agg.recordings += 1
    if recording.is_published:
        agg.published_recordings += 1


def metadata_values(metadata_xml: str, metadata_keys: Sequence[str]) -> list[str]:
    """Resolve the grouping values a record contributes to.

    Args:
        metadata_xml: The record's raw metadata fragment.
        metadata_keys: Configured metadata names, in configuration order.

    Returns:
        One value per configured name present on the record, in the order the
        names are configured. A value matched under two names appears twice,
        so the record contributes to that bucket once per matching name.
    """
    parsed = extract_metadata(metadata_xml)
    return [parsed[name] for name in metadata_keys if name in parsed]


def _bucket(by_metadata: MetadataKeyedAggregates, value: str) -> Aggregate:
    if value not in by_metadata:
        by_metadata[value] = Aggregate()
    return by_metadata[value]


def aggregate_meetings(
    meetings: Iterable[Meeting], metadata_keys: Sequence[str] = ()
) -> AggregationResult:
    """Aggregate meetings into a private partial result.

    Metadata is only parsed when ``metadata_keys`` is non-empty.
    """
    total = Aggregate()
    by_metadata: MetadataKeyedAggregates = {}

    for meeting in meetings:
        accumulate_meeting(total, meeting)
        if metadata_keys:
            for value in metadata_values(meeting.metadata_xml, metadata_keys):
                accumulate_meeting(_bucket(by_metadata, value), meeting)

    return AggregationResult(total, by_metadata)


def aggregate_recordings(
    recordings: Iterable[Recording], metadata_keys: Sequence[str] = ()
) -> AggregationResult:
    """Aggregate recordings into a private partial result.

    Metadata is only parsed when ``metadata_keys`` is non-empty.
    """
    total = Aggregate()
    by_metadata: MetadataKeyedAggregates = {}

    for recording in recordings:
        accumulate_recording(total, recording)
        if metadata_keys:
            for value in metadata_values(recording.metadata_xml, metadata_keys):
                accumulate_recording(_bucket(by_metadata, value), recording)

    return AggregationResult(total, by_metadata)


def merge_keyed(
    left: Mapping[str, Aggregate], right: Mapping[str, Aggregate]
) -> MetadataKeyedAggregates:
    """Merge two keyed maps value by value into a new map.

    Neither input is modified; aggregates present on one side only are copied.
    """
    merged: MetadataKeyedAggregates = {}
    for value in [*left, *(k for k in right if k not in left)]:
        merged[value] = left.get(value, Aggregate()).merge(right.get(value, Aggregate()))
    return merged


def aggregate(
    meetings: Sequence[Meeting],
    recordings: Sequence[Recording],
    health: HealthCheck,
    metadata_keys: Sequence[str] = (),
    parallel: bool = False,
) -> AggregationResult:
    """Compute the global aggregate and the per-metadata-value breakdown.

    Args:
        meetings: Meetings returned by getMeetings.
        recordings: Recordings returned by getRecordings.
        health: The API health check result.
        metadata_keys: Metadata names to break down by. Empty disables the
            breakdown and skips metadata parsing.
        parallel: Run the meeting and recording passes on two threads. Each
            pass owns its own accumulators; results are merged afterwards.

    Returns:
        ``(total, by_metadata)``. Every aggregate carries the same ``online``
        value, the health check is not metadata-scoped.
    """
    keys = list(metadata_keys)

    if parallel:
        with ThreadPoolExecutor(max_workers=2) as executor:
            meetings_future = executor.submit(aggregate_meetings, meetings, keys)
            recordings_future = executor.submit(aggregate_recordings, recordings, keys)
            meeting_part = meetings_future.result()
            recording_part = recordings_future.result()
    else:
        meeting_part = aggregate_meetings(meetings, keys)
        recording_part = aggregate_recordings(recordings, keys)

    total = meeting_part.total.merge(recording_part.total)
    by_metadata = merge_keyed(meeting_part.by_metadata, recording_part.by_metadata)

    online = online_value(health)
    total.online = online
    for agg in by_metadata.values():
        agg.online = online

    logger.debug(
        "Aggregated %d meetings and %d recordings into %d metadata bucket(s)",
        total.meetings,
        total.recordings,
        len(by_metadata),
    )
    return AggregationResult(total, by_metadata)
