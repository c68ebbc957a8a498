"""
Grant status and expiry rules.

Lifecycle is status-only and one-way: open -> closed. Rolling
deadlines never expire; an explicit closed signal from the source
always wins over date inference.
"""

from datetime import date
from typing import Iterable, Optional, Union

from .models import DeadlineType, GrantStatus, NormalizedGrant
from .normalizer import determine_status


def _enum_value(value: Union[str, DeadlineType, GrantStatus, None]) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


def status_for_deadline(
    deadline_type: DeadlineType,
    deadline_date: Optional[date],
    source_status: Optional[str] = None,
    open_date: Optional[date] = None,
    today: Optional[date] = None,
) -> GrantStatus:
    """
    Status of a freshly ingested grant.

    Args:
        deadline_type: fixed / rolling / unknown
        deadline_date: Closing date if known
        source_status: Explicit upstream status signal
        open_date: Date applications open, if upstream reports it
        today: Reference date

    Returns:
        forecasted, open or closed
    """
    close_date = None if deadline_type == DeadlineType.ROLLING else deadline_date
    return determine_status(source_status, open_date, close_date, today=today)


def is_grant_expired(
    status: Union[str, GrantStatus],
    deadline_type: Union[str, DeadlineType],
    deadline_date: Optional[date],
    today: Optional[date] = None,
) -> bool:
    """True when a grant should be (or already is) closed."""
    today = today or date.today()

    if _enum_value(status) == GrantStatus.CLOSED.value:
        return True
    if _enum_value(deadline_type) == DeadlineType.ROLLING.value:
        return False
    if deadline_date is not None:
        return deadline_date < today
    return False


def find_expired_grants(
    grants: Iterable[NormalizedGrant],
    today: Optional[date] = None,
) -> list[NormalizedGrant]:
    """Open, fixed-deadline grants whose deadline has passed."""
    return [
        grant for grant in grants
        if grant.status == GrantStatus.OPEN
        and grant.deadline_type == DeadlineType.FIXED
        and is_grant_expired(grant.status, grant.deadline_type, grant.deadline_date, today)
    ]
