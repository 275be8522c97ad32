"""Metadata extraction for meeting and recording records.

BigBlueButton lets API clients attach arbitrary ``meta_*`` parameters to a
meeting. The server echoes them back as free-form child elements of a
``<metadata>`` container:

    <metadata>
        <bbb-origin>Greenlight</bbb-origin>
        <tenant>acme</tenant>
    </metadata>

Records keep that fragment untouched; this module flattens it into a
``{local_name: text}`` mapping only when a caller asks for it.
"""

from __future__ import annotations

import io
import logging
from xml.etree.ElementTree import ParseError

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import iterparse

logger = logging.getLogger(__name__)

_WRAPPER_OPEN = b"<metadata>"
_WRAPPER_CLOSE = b"</metadata>"


def local_name(tag: str) -> str:
    """Strip a ``{namespace}`` prefix from an element tag."""
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[-1]
    return tag


def extract_metadata(fragment: str | bytes | None) -> dict[str, str]:
    """Flatten a metadata fragment into a name -> value mapping.

    The fragment is the inner markup of a ``<metadata>`` element and may hold
    any number of sibling elements. Each element's text is bound to its local
    name when the element closes. Values are stripped; elements without text
    are skipped, and a repeated name keeps the last value seen.

    Args:
        fragment: Raw inner XML of the metadata container.

    Returns:
        The flattened mapping. Malformed fragments yield an empty mapping.
    """
    if not fragment:
        return {}

    if isinstance(fragment, str):
        fragment = fragment.encode("utf-8")

    source = io.BytesIO(_WRAPPER_OPEN + fragment + _WRAPPER_CLOSE)
    values: dict[str, str] = {}
    root = None

    try:
        for event, elem in iterparse(source, events=("start", "end")):
            if root is None:
                root = elem
                continue
            if event != "end" or elem is root:
                continue

            text = (elem.text or "").strip()
            if text:
                values[local_name(elem.tag)] = text
    except (ParseError, DefusedXmlException) as e:
        logger.debug("Ignoring malformed metadata fragment: %s", e)
        return {}

    return values
