"""Cross-cutting helpers: time and request identity."""

from utils.timezone import Clock, now_utc, to_utc, ensure_utc, parse_iso
from utils.user_context import (
    get_current_user_id,
    set_current_user_id,
    clear_current_user_id,
    user_context,
)
