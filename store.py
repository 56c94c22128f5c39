import logging
import threading
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

TABLE = "counter_log"

# Direct messages have no group. NULL never collides in a UNIQUE constraint,
# so "no group" is persisted as '' and mapped back to None on the way out.
NO_GROUP = ""


class StoreError(Exception):
    pass


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"empty date range {self.start} > {self.end}")

    @classmethod
    def single(cls, day: date) -> "DateRange":
        return cls(day, day)

    @classmethod
    def trailing(cls, end: date, days: int) -> "DateRange":
        return cls(end - timedelta(days=days - 1), end)

    @property
    def label(self) -> str:
        if self.start == self.end:
            return self.start.isoformat()
        return f"{self.start.isoformat()} ~ {self.end.isoformat()}"


@dataclass(frozen=True)
class CounterTotal:
    group_id: str | None
    user_id: str
    display_name: str | None
    total: int


class CounterStore:
    def __init__(self, database_url: str):
        self.engine = create_engine(
            database_url,
            pool_pre_ping=True,
            future=True,
            connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        )
        self.is_postgres = self.engine.dialect.name.startswith("postgres")
        self._lock = threading.Lock()

    # -------- low level --------

    def _execute(self, query: str, params: dict | None = None) -> int:
        try:
            with self._lock:
                with self.engine.begin() as conn:
                    return conn.execute(text(query), params or {}).rowcount
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    def _query_all(self, query: str, params: dict | None = None) -> list[dict]:
        try:
            with self._lock:
                with self.engine.connect() as conn:
                    rows = conn.execute(text(query), params or {}).mappings().all()
                    return [dict(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    def init_schema(self):
        id_column = "id BIGSERIAL PRIMARY KEY" if self.is_postgres else "id INTEGER PRIMARY KEY AUTOINCREMENT"
        date_type = "DATE" if self.is_postgres else "TEXT"
        self._execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE} (
              {id_column},
              user_id TEXT NOT NULL,
              group_id TEXT NOT NULL DEFAULT '',
              display_name TEXT,
              count_date {date_type} NOT NULL,
              count INTEGER NOT NULL DEFAULT 0,
              UNIQUE(user_id, group_id, count_date)
            )
            """
        )
        self._execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_date ON {TABLE}(count_date)")

    def ping(self) -> bool:
        try:
            self._query_all("SELECT 1 AS ok")
            return True
        except StoreError:
            return False

    def dispose(self):
        self.engine.dispose()

    # -------- operations --------

    def upsert_increment(self, user_id: str, group_id: str | None, display_name: str | None, day: date):
        """Add one to the (user, group, day) counter, creating it at 1.

        A single INSERT .. ON CONFLICT statement, so concurrent callers for
        the same key can neither duplicate the row nor lose an increment.
        """
        self._execute(
            f"""
            INSERT INTO {TABLE} (user_id, group_id, display_name, count_date, count)
            VALUES (:user_id, :group_id, :display_name, :count_date, 1)
            ON CONFLICT (user_id, group_id, count_date) DO UPDATE
            SET count = {TABLE}.count + 1, display_name = EXCLUDED.display_name
            """,
            {
                "user_id": user_id,
                "group_id": group_id or NO_GROUP,
                "display_name": display_name,
                "count_date": day.isoformat(),
            },
        )

    def query_totals(self, window: DateRange) -> list[CounterTotal]:
        """Sum counts per (group, user) inside the window, highest total first.

        Ties are broken by user_id ascending. The display name is taken from
        the newest row of the pair inside the window.
        """
        rows = self._query_all(
            f"""
            SELECT t.group_id AS group_id, t.user_id AS user_id, SUM(t.count) AS total,
                   (SELECT d.display_name FROM {TABLE} d
                    WHERE d.user_id = t.user_id AND d.group_id = t.group_id
                      AND d.count_date >= :start AND d.count_date <= :end
                    ORDER BY d.count_date DESC LIMIT 1) AS display_name
            FROM {TABLE} t
            WHERE t.count_date >= :start AND t.count_date <= :end
            GROUP BY t.group_id, t.user_id
            ORDER BY total DESC, t.user_id ASC
            """,
            {"start": window.start.isoformat(), "end": window.end.isoformat()},
        )
        return [
            CounterTotal(
                group_id=r["group_id"] or None,
                user_id=r["user_id"],
                display_name=r["display_name"],
                total=int(r["total"] or 0),
            )
            for r in rows
        ]

    def delete_older_than(self, cutoff: date) -> int:
        return self._execute(
            f"DELETE FROM {TABLE} WHERE count_date < :cutoff",
            {"cutoff": cutoff.isoformat()},
        )

    def get_count(self, user_id: str, group_id: str | None, day: date) -> int:
        rows = self._query_all(
            f"SELECT count FROM {TABLE} WHERE user_id = :user_id AND group_id = :group_id AND count_date = :count_date",
            {"user_id": user_id, "group_id": group_id or NO_GROUP, "count_date": day.isoformat()},
        )
        return int(rows[0]["count"]) if rows else 0

