"""Business rules and constants for calendar conflict detection.

All thresholds used to decide whether two calendar intervals conflict, and how
severe the conflict is, are centralized here.
"""

from typing import Final

DEFAULT_BACK_TO_BACK_THRESHOLD_MINUTES: Final[int] = 0
"""Maximum gap in minutes between two events that still counts as back-to-back.

Business rule: with the default of 0 only touching events (one ends exactly
when the next starts) are reported.

Example:
    - 09:00-10:00 and 10:00-11:00 → gap 0 → back-to-back
    - 09:00-10:00 and 10:05-11:00 → gap 5 → not reported (threshold 0)
"""

DEFAULT_MIN_OVERLAP_MINUTES: Final[int] = 1
"""Minimum overlap in minutes before an overlap is reported."""

WHOLE_DAY_MIN_HOURS: Final[float] = 20.0
"""Events lasting this long are treated as whole-day and skipped.

Accounts for timezone shifts that make an all-day block slightly shorter
than 24 hours.
"""

MAJOR_OVERLAP_MINUTES: Final[int] = 60
MODERATE_OVERLAP_MINUTES: Final[int] = 30
"""Overlap severity thresholds.

Business rule: exact time matches are always major; otherwise 60+ minutes is
major, 30+ minutes moderate and anything shorter minor.
"""

DECLINED_RESPONSE_STATUS: Final[str] = "declined"

OUT_OF_OFFICE_KEYWORDS: Final[tuple[str, ...]] = (
    "out of office",
    "ooo",
    "annual leave",
    "al",
    "vacation",
    "holiday",
    "time off",
    "pto",
    "personal time off",
    "sick leave",
    "medical leave",
    "maternity leave",
    "paternity leave",
    "bereavement",
    "sabbatical",
    "leave of absence",
    "day off",
    "working from home",
    "wfh",
    "remote work",
    "unavailable",
    "busy",
    "blocked",
    "do not schedule",
)
"""Title/description substrings marking leave or blocker events.

Matching is a plain case-insensitive substring check. Short entries such as
"al" therefore also match inside longer words ("Quarterly financial review");
the list is kept as-is for parity with the existing product behavior.
"""

UNTITLED_EVENT: Final[str] = "Untitled Event"
