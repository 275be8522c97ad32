"""API health status mapping.

The API root answers with a coarse return code only, so the server is either
online or not.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bbbmetrics.models import SUCCESS

if TYPE_CHECKING:
    from bbbmetrics.models import HealthCheck


def map_health(check: HealthCheck) -> bool:
    """Return True iff the health check reported exactly ``SUCCESS``."""
    return check.return_code == SUCCESS


def online_value(check: HealthCheck) -> int:
    """The ``online`` counter value for a health check: 1 or 0."""
    return 1 if map_health(check) else 0
