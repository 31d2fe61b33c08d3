from __future__ import annotations

import logging
from typing import Optional

from eventopro.auth.models import Activity
from eventopro.storage.base import ActivityLog

logger = logging.getLogger(__name__)


def record_activity(
    log: ActivityLog,
    action: str,
    description: str,
    *,
    user_id: Optional[int] = None,
    target_user_id: Optional[int] = None,
    event_id: Optional[int] = None,
    attendee_id: Optional[int] = None,
) -> None:
    """
    Append an activity entry, fire-and-forget.

    The activity log is a side channel: a failing sink is logged and never
    fails the request that produced the entry.
    """
    activity = Activity(
        action=action,
        description=description,
        user_id=user_id,
        target_user_id=target_user_id,
        event_id=event_id,
        attendee_id=attendee_id,
    )
    try:
        log.append(activity)
    except Exception as e:
        logger.warning("Activity log append failed (non-fatal): action=%s err=%s", action, str(e))
