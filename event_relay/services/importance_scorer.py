"""Importance scoring service for mailbox messages and calendar items.

Heuristic scores only: keyword hits, sender domain, reply markers and meeting
shape are summed and mapped onto a level. No I/O.
"""

from collections.abc import Iterable

from event_relay.domain.models import (
    CalendarItem,
    EventPriority,
    ImportanceLevel,
    MailMessage,
)
from event_relay.domain.scoring_constants import (
    BODY_KEYWORD_WEIGHT,
    BODY_STRONG_KEYWORD_WEIGHT,
    CALENDAR_ATTENDEES_BONUS,
    CALENDAR_DESCRIPTION_KEYWORD_WEIGHT,
    CALENDAR_HIGH_SCORE,
    CALENDAR_IMPORTANT_KEYWORDS,
    CALENDAR_LOCATION_BONUS,
    CALENDAR_LONG_MEETING_BONUS,
    CALENDAR_LONG_MEETING_HOURS,
    CALENDAR_MEDIUM_SCORE,
    CALENDAR_TITLE_KEYWORD_WEIGHT,
    HIGH_MESSAGE_SCORE,
    MEDIUM_MESSAGE_SCORE,
    MEETING_TERM_WEIGHT,
    MEETING_TERMS,
    REPLY_FORWARD_MARKERS,
    REPLY_FORWARD_WEIGHT,
    STRONGEST_URGENCY_KEYWORDS,
    SUBJECT_KEYWORD_WEIGHT,
    SUBJECT_STRONG_KEYWORD_WEIGHT,
    URGENCY_KEYWORDS,
    URGENT_MESSAGE_SCORE,
    VIP_DOMAIN_WEIGHT,
    VIP_DOMAINS,
)


class ImportanceScorer:
    """Calculate importance levels for messages and priorities for calendar items."""

    def __init__(
        self,
        urgency_keywords: Iterable[str] | None = None,
        vip_domains: Iterable[str] | None = None,
        calendar_keywords: Iterable[str] | None = None,
    ) -> None:
        """Initialize importance scorer.

        Args:
            urgency_keywords: Override default urgency keyword list
            vip_domains: Override default sender allow-list
            calendar_keywords: Override default calendar importance keywords
        """
        self.urgency_keywords = tuple(
            k.lower() for k in (urgency_keywords or URGENCY_KEYWORDS)
        )
        self.vip_domains = tuple(d.lower() for d in (vip_domains or VIP_DOMAINS))
        self.calendar_keywords = tuple(
            k.lower() for k in (calendar_keywords or CALENDAR_IMPORTANT_KEYWORDS)
        )

    def calculate_message_score(self, message: MailMessage) -> int:
        """Calculate heuristic importance score for a message.

        Components:
        - Urgency keywords in subject (2, or 3 for the strongest)
        - Urgency keywords in body (1, or 2 for the strongest)
        - Sender domain on the allow-list (+1)
        - Reply/forward marker in subject (+1)
        - Meeting-related terms in subject (+2)

        Args:
            message: Message to score

        Returns:
            Non-negative integer score

        Example:
            >>> scorer = ImportanceScorer()
            >>> scorer.calculate_message_score(MailMessage(id="m1", user_id="u1",
            ...     subject="URGENT: server down"))
            3
        """
        subject = (message.subject or "").lower()
        body = (message.body or "").lower()
        from_address = (message.from_address or "").lower()

        score = 0

        for keyword in self.urgency_keywords:
            strong = keyword in STRONGEST_URGENCY_KEYWORDS
            if keyword in subject:
                score += (
                    SUBJECT_STRONG_KEYWORD_WEIGHT if strong else SUBJECT_KEYWORD_WEIGHT
                )
            if keyword in body:
                score += BODY_STRONG_KEYWORD_WEIGHT if strong else BODY_KEYWORD_WEIGHT

        if any(domain in from_address for domain in self.vip_domains):
            score += VIP_DOMAIN_WEIGHT

        if any(marker in subject for marker in REPLY_FORWARD_MARKERS):
            score += REPLY_FORWARD_WEIGHT

        if any(term in subject for term in MEETING_TERMS):
            score += MEETING_TERM_WEIGHT

        return score

    def classify_message(self, message: MailMessage) -> ImportanceLevel:
        """Map a message's score onto an importance level."""
        return self.get_importance_level(self.calculate_message_score(message))

    def get_importance_level(self, score: int) -> ImportanceLevel:
        """Get importance level for a message score.

        Example:
            >>> ImportanceScorer().get_importance_level(4)
            <ImportanceLevel.URGENT: 'urgent'>
        """
        if score >= URGENT_MESSAGE_SCORE:
            return ImportanceLevel.URGENT
        elif score >= HIGH_MESSAGE_SCORE:
            return ImportanceLevel.HIGH
        elif score >= MEDIUM_MESSAGE_SCORE:
            return ImportanceLevel.MEDIUM
        else:
            return ImportanceLevel.LOW

    def calculate_calendar_score(self, item: CalendarItem) -> int:
        """Calculate heuristic score for a calendar item.

        Components:
        - Importance keywords in title (+2 each)
        - Importance keywords in description (+1 each)
        - Has location (+1)
        - Has attendees (+1)
        - Lasts 2 hours or more (+1)
        """
        title = item.title.lower()
        description = (item.description or "").lower()

        score = 0
        for keyword in self.calendar_keywords:
            if keyword in title:
                score += CALENDAR_TITLE_KEYWORD_WEIGHT
            if keyword in description:
                score += CALENDAR_DESCRIPTION_KEYWORD_WEIGHT

        if item.location:
            score += CALENDAR_LOCATION_BONUS

        if item.attendees:
            score += CALENDAR_ATTENDEES_BONUS

        if item.duration_minutes / 60 >= CALENDAR_LONG_MEETING_HOURS:
            score += CALENDAR_LONG_MEETING_BONUS

        return score

    def calculate_calendar_priority(self, item: CalendarItem) -> EventPriority:
        """Map a calendar item's score onto low/medium/high priority."""
        score = self.calculate_calendar_score(item)
        if score >= CALENDAR_HIGH_SCORE:
            return EventPriority.HIGH
        elif score >= CALENDAR_MEDIUM_SCORE:
            return EventPriority.MEDIUM
        else:
            return EventPriority.LOW
