import logging

from line_api import LineApiError
from store import CounterStore, CounterTotal, DateRange, StoreError

logger = logging.getLogger(__name__)


def format_ranking(title: str, totals: list[CounterTotal]) -> str:
    lines = [title]
    for rank, row in enumerate(totals, start=1):
        lines.append(f"{rank}. {row.display_name or row.user_id}: {row.total} times")
    return "\n".join(lines)


def partition_by_group(totals: list[CounterTotal]) -> dict[str | None, list[CounterTotal]]:
    # Keeps the query order inside each conversation.
    out: dict[str | None, list[CounterTotal]] = {}
    for row in totals:
        out.setdefault(row.group_id, []).append(row)
    return out


class Notifier:
    def __init__(self, line):
        self.line = line

    def dispatch(self, conversation_id: str, text: str) -> bool:
        try:
            self.line.push_text(conversation_id, text)
        except LineApiError as e:
            logger.error("Push failed groupId=%s status=%s body=%s", conversation_id, e.status_code, e.body or e)
            return False
        except Exception:
            logger.exception("Push failed groupId=%s", conversation_id)
            return False
        logger.info("Pushed ranking to group %s", conversation_id)
        return True


class RankingAggregator:
    def __init__(self, store: CounterStore, notifier: Notifier):
        self.store = store
        self.notifier = notifier

    def compute_ranking(self, window: DateRange, title: str) -> list[str]:
        """Push one ranking per group for the window; returns the groups reached.

        StoreError propagates so the caller's run is aborted before anything is sent.
        """
        try:
            totals = self.store.query_totals(window)
        except StoreError as e:
            logger.error("Ranking query failed for %s, nothing pushed: %s", window.label, e)
            raise

        if not totals:
            logger.info("%s: no records", title)
            return []

        delivered = []
        for group_id, rows in partition_by_group(totals).items():
            if group_id is None:
                logger.info("%s: %d direct-message counters have no group to push to", title, len(rows))
                continue
            if self.notifier.dispatch(group_id, format_ranking(title, rows)):
                delivered.append(group_id)
        return delivered
