from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional


def now_ts() -> int:
    return int(time.time())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ts_to_iso(ts: Any) -> Optional[str]:
    """Unix seconds (as Stripe sends them) to ISO-8601 UTC; falsy stays None."""
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat()
