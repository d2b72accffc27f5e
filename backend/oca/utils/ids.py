"""ID helpers."""

from __future__ import annotations

import uuid


def new_uuid() -> str:
    """Canonical dashed UUID4, accepted by Postgres ``uuid`` columns."""
    return str(uuid.uuid4())
