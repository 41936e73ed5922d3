"""
Helpers shared by the route modules.
"""

from __future__ import annotations

import logging
from typing import Optional

from kepka.db import DbClient, UserRecord
from kepka.dependencies import RequestContext
from kepka.errors import UpstreamError

logger = logging.getLogger(__name__)


def audit(
    db: DbClient,
    user: Optional[UserRecord],
    ctx: RequestContext,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Append an audit entry; a storage failure is logged, not raised."""
    try:
        db.append_audit_log(
            user_id=user.id if user else None,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            metadata=metadata,
        )
    except UpstreamError:
        logger.exception("Audit log write failed for %s %s", action, resource_type)
