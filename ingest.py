import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

from events import OtherEvent, TextMessageEvent
from line_api import LineApiError
from store import CounterStore

logger = logging.getLogger(__name__)

UNKNOWN_USER = "unknown_user"


class EventIngestor:
    def __init__(self, store: CounterStore, line, keyword: str, tz: ZoneInfo, clock=None):
        self.store = store
        self.line = line
        self.keyword = keyword
        self.tz = tz
        self._clock = clock

    def today(self) -> date:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self.tz).date()

    def resolve_display_name(self, user_id: str, group_id: str | None, source_type: str) -> str:
        if user_id == UNKNOWN_USER:
            return user_id
        try:
            if source_type == "user":
                return self.line.get_profile(user_id)
            if source_type == "group" and group_id:
                return self.line.get_group_member_profile(group_id, user_id)
        except LineApiError as e:
            logger.warning("Profile lookup failed for %s, using userId: %s", user_id, e)
        except Exception:
            logger.warning("Profile lookup failed for %s, using userId", user_id, exc_info=True)
        return user_id

    def handle_event(self, event: TextMessageEvent | OtherEvent) -> bool:
        """Count one event. Returns True when a counter was incremented."""
        if not isinstance(event, TextMessageEvent):
            logger.debug("Skipping non-text event type=%s", event.type)
            return False
        if self.keyword not in event.text:
            return False

        source = event.source
        user_id = source.user_id or UNKNOWN_USER
        group_id = source.group_id if source.is_group else None
        display_name = self.resolve_display_name(user_id, group_id, source.type)
        day = self.today()

        try:
            self.store.upsert_increment(user_id, group_id, display_name, day)
        except Exception:
            logger.exception("Store write failed userId=%s groupId=%s date=%s", user_id, group_id, day)
            return False

        logger.info("Counted userId=%s groupId=%s displayName=%s date=%s", user_id, group_id, display_name, day)
        return True

    def handle_batch(self, events: list[TextMessageEvent | OtherEvent]) -> int:
        counted = 0
        for event in events:
            try:
                if self.handle_event(event):
                    counted += 1
            except Exception:
                logger.exception("Unexpected failure while handling event")
        return counted
