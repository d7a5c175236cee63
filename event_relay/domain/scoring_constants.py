"""Scoring constants for message importance and calendar priority.

Keyword lists and weights used by the importance scorer. The lists can be
overridden per deployment through ``ImportanceScorer`` constructor arguments,
but the thresholds are business rules and live here.
"""

from typing import Final

URGENCY_KEYWORDS: Final[tuple[str, ...]] = (
    "urgent",
    "asap",
    "immediately",
    "emergency",
    "critical",
    "important",
    "deadline",
    "overdue",
    "time sensitive",
    "priority",
    "action required",
    "respond today",
    "needs attention",
    "final notice",
    "last chance",
    "security",
    "alert",
    "invoice",
    "purchase",
    "order",
    "payment",
    "receipt",
    "refund",
    "shipping",
    "delivery",
)
"""Substrings that make a message look urgent (matched case-insensitively)."""

STRONGEST_URGENCY_KEYWORDS: Final[frozenset[str]] = frozenset({"urgent", "emergency"})
"""Keywords carrying the elevated weight."""

VIP_DOMAINS: Final[tuple[str, ...]] = (
    "gmail.com",
    "bank.com",
    "playstation.com",
    "google.com",
    "microsoft.com",
    "apple.com",
    "amazon.com",
    "meta.com",
    "netflix.com",
    "spotify.com",
    "youtube.com",
    "github.com",
    "crypto.com",
)
"""Sender domains that add a small importance bonus."""

REPLY_FORWARD_MARKERS: Final[tuple[str, ...]] = ("re:", "fwd:")

MEETING_TERMS: Final[tuple[str, ...]] = ("meeting", "calendar")

CALENDAR_IMPORTANT_KEYWORDS: Final[tuple[str, ...]] = (
    "meeting",
    "interview",
    "presentation",
    "deadline",
    "due",
    "launch",
    "release",
    "review",
    "standup",
    "sync",
    "planning",
)
"""Keywords that raise a calendar item's priority."""

# Message weights
SUBJECT_KEYWORD_WEIGHT: Final[int] = 2
SUBJECT_STRONG_KEYWORD_WEIGHT: Final[int] = 3
BODY_KEYWORD_WEIGHT: Final[int] = 1
BODY_STRONG_KEYWORD_WEIGHT: Final[int] = 2
VIP_DOMAIN_WEIGHT: Final[int] = 1
REPLY_FORWARD_WEIGHT: Final[int] = 1
MEETING_TERM_WEIGHT: Final[int] = 2

# Message thresholds
URGENT_MESSAGE_SCORE: Final[int] = 4
HIGH_MESSAGE_SCORE: Final[int] = 3
MEDIUM_MESSAGE_SCORE: Final[int] = 2
"""Score → level mapping.

Business rule: only ``high`` and ``urgent`` messages produce an event.

Example:
    - Subject "URGENT: server down" → 3 (strong keyword) → high
    - Subject "Re: urgent invoice" → 3 + 2 + 1 = 6 → urgent
"""

# Calendar weights
CALENDAR_TITLE_KEYWORD_WEIGHT: Final[int] = 2
CALENDAR_DESCRIPTION_KEYWORD_WEIGHT: Final[int] = 1
CALENDAR_LOCATION_BONUS: Final[int] = 1
CALENDAR_ATTENDEES_BONUS: Final[int] = 1
CALENDAR_LONG_MEETING_BONUS: Final[int] = 1
CALENDAR_LONG_MEETING_HOURS: Final[float] = 2.0

# Calendar thresholds
CALENDAR_HIGH_SCORE: Final[int] = 4
CALENDAR_MEDIUM_SCORE: Final[int] = 2

SNIPPET_MAX_LENGTH: Final[int] = 100
