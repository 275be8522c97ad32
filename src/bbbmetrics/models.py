"""Record models decoded from BigBlueButton API responses.

The API answers every call with an XML ``<response>`` envelope:

    <response>
        <returncode>SUCCESS</returncode>
        <meetings>
            <meeting>
                <meetingID>...</meetingID>
                <participantCount>5</participantCount>
                ...
                <metadata>...</metadata>
            </meeting>
        </meetings>
    </response>

Only the fields the collector counts are decoded. The ``<metadata>`` block is
kept as a raw fragment and parsed on demand by ``bbbmetrics.metadata``.
"""

from __future__ import annotations

from dataclasses import dataclass
from xml.etree.ElementTree import Element, ParseError, tostring

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring

from bbbmetrics.errors import ApiError, ResponseDecodeError

SUCCESS = "SUCCESS"

NO_MEETINGS = "noMeetings"
NO_RECORDINGS = "noRecordings"


@dataclass(frozen=True)
class Meeting:
    """A running meeting as reported by getMeetings.

    Attributes:
        participant_count: Users currently in the meeting.
        listener_count: Users connected listen-only.
        voice_participant_count: Users with an active voice connection.
        video_count: Users sharing a webcam.
        is_recording: Whether the meeting is being recorded right now.
        metadata_xml: Raw inner XML of the ``<metadata>`` element.
        meeting_id: The meeting identifier, if reported.
        meeting_name: The human readable meeting name, if reported.
    """

    participant_count: int = 0
    listener_count: int = 0
    voice_participant_count: int = 0
    video_count: int = 0
    is_recording: bool = False
    metadata_xml: str = ""
    meeting_id: str | None = None
    meeting_name: str | None = None


@dataclass(frozen=True)
class Recording:
    """A recording as reported by getRecordings.

    Attributes:
        is_published: Whether the recording is published.
        metadata_xml: Raw inner XML of the ``<metadata>`` element.
        record_id: The recording identifier, if reported.
    """

    is_published: bool = False
    metadata_xml: str = ""
    record_id: str | None = None


@dataclass(frozen=True)
class HealthCheck:
    """Result of calling the API root, which BigBlueButton uses as a health check."""

    return_code: str = ""
    version: str | None = None


def _child_text(elem: Element, name: str) -> str | None:
    child = elem.find(name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _child_int(elem: Element, name: str) -> int:
    """Read a counter; anything missing or unparsable counts as zero."""
    text = _child_text(elem, name)
    if not text:
        return 0
    try:
        value = int(text)
    except ValueError:
        return 0
    return max(value, 0)


def _child_bool(elem: Element, name: str) -> bool:
    text = _child_text(elem, name)
    if text is None:
        return False
    return text.lower() in ("true", "1")


def _metadata_fragment(elem: Element) -> str:
    """Serialize the children of ``<metadata>`` back into a fragment."""
    container = elem.find("metadata")
    if container is None:
        return ""
    return "".join(tostring(child, encoding="unicode") for child in container)


def _parse_envelope(body: bytes | str) -> Element:
    try:
        root = fromstring(body)
    except (ParseError, DefusedXmlException) as e:
        raise ResponseDecodeError(f"Invalid XML response: {e}") from e

    if root.tag != "response":
        raise ResponseDecodeError(
            f"Unexpected root element <{root.tag}>, expected <response>"
        )
    return root


def _check_return_code(root: Element, call_name: str) -> str:
    """Raise ApiError unless the envelope reports SUCCESS; return the messageKey."""
    return_code = _child_text(root, "returncode") or ""
    message_key = _child_text(root, "messageKey") or ""
    if return_code != SUCCESS:
        raise ApiError(call_name, return_code, message_key)
    return message_key


def meeting_from_element(elem: Element) -> Meeting:
    """Build a Meeting from a ``<meeting>`` element."""
    return Meeting(
        participant_count=_child_int(elem, "participantCount"),
        listener_count=_child_int(elem, "listenerCount"),
        voice_participant_count=_child_int(elem, "voiceParticipantCount"),
        video_count=_child_int(elem, "videoCount"),
        is_recording=_child_bool(elem, "recording"),
        metadata_xml=_metadata_fragment(elem),
        meeting_id=_child_text(elem, "meetingID"),
        meeting_name=_child_text(elem, "meetingName"),
    )


def recording_from_element(elem: Element) -> Recording:
    """Build a Recording from a ``<recording>`` element."""
    return Recording(
        is_published=_child_bool(elem, "published"),
        metadata_xml=_metadata_fragment(elem),
        record_id=_child_text(elem, "recordID"),
    )


def parse_meetings_response(body: bytes | str) -> list[Meeting]:
    """Decode a getMeetings response.

    Raises:
        ResponseDecodeError: If the body is not a response envelope.
        ApiError: If the server did not answer SUCCESS.
    """
    root = _parse_envelope(body)
    message_key = _check_return_code(root, "getMeetings")
    if message_key == NO_MEETINGS:
        return []
    return [meeting_from_element(e) for e in root.findall("./meetings/meeting")]


def parse_recordings_response(body: bytes | str) -> list[Recording]:
    """Decode a getRecordings response.

    Raises:
        ResponseDecodeError: If the body is not a response envelope.
        ApiError: If the server did not answer SUCCESS.
    """
    root = _parse_envelope(body)
    message_key = _check_return_code(root, "getRecordings")
    if message_key == NO_RECORDINGS:
        return []
    return [recording_from_element(e) for e in root.findall("./recordings/recording")]


def parse_health_response(body: bytes | str) -> HealthCheck:
    """Decode the API root response.

    The return code is reported as-is, a FAILED health check is still a valid
    response.

    Raises:
        ResponseDecodeError: If the body is not a response envelope.
    """
    root = _parse_envelope(body)
    return HealthCheck(
        return_code=_child_text(root, "returncode") or "",
        version=_child_text(root, "version"),
    )
