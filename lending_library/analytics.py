"""Borrowing analytics over the loan history.

Every loan row ever opened counts as one borrow, returned or not. Reports
group loans by book, genre or author and count how many fall inside the
trailing week, month and year, measured back from the injected clock.
Timestamps are stored as UTC ISO-8601 text, so a window is a plain string
comparison against the cutoff.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .database import Database, storage_errors, to_iso, utc_now
from .errors import InvalidInput

logger = logging.getLogger(__name__)

# period -> (window length, default number of books in the report)
REPORT_WINDOWS = {
    "weekly": (timedelta(days=7), 20),
    "monthly": (timedelta(days=30), 30),
    "yearly": (timedelta(days=365), 50),
}
AUTHOR_REPORT_LIMIT = 30

# period -> (bucket start, date modifiers from start to last day, lookback)
TREND_BUCKETS = {
    "weekly": ("date(substr(BorrowedAt, 1, 10), 'weekday 0', '-6 days')", ("+6 days",), timedelta(weeks=12)),
    "monthly": ("date(substr(BorrowedAt, 1, 10), 'start of month')", ("+1 month", "-1 day"), timedelta(days=365)),
    "yearly": ("date(substr(BorrowedAt, 1, 10), 'start of year')", ("+1 year", "-1 day"), timedelta(days=5 * 365)),
}

_LOANS_WITH_BOOKS = "FROM loans l JOIN copies c ON c.CopyID = l.CopyID JOIN books b ON b.ID = c.BookID"

_WINDOW_COUNTS = (
    "SUM(CASE WHEN l.BorrowedAt >= ? THEN 1 ELSE 0 END) AS WeeklyBorrows, "
    "SUM(CASE WHEN l.BorrowedAt >= ? THEN 1 ELSE 0 END) AS MonthlyBorrows, "
    "SUM(CASE WHEN l.BorrowedAt >= ? THEN 1 ELSE 0 END) AS YearlyBorrows"
)


def _check_period(period: str, allowed: Dict[str, Any]) -> None:
    if period not in allowed:
        raise InvalidInput(
            f"Invalid period '{period}'. Must be one of: {', '.join(allowed)}", field="period"
        )


class SQLiteBorrowingAnalytics:
    """Read-only borrowing reports computed with grouped SQL."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now) -> None:
        self.db = db
        self.clock = clock

    # ------------------------- Book reports ------------------------- #
    def popular_books(self, period: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Books borrowed at least once in the trailing ``period``, most borrowed first.

        Ties on the period count are broken by all-time borrows, then book ID.
        """
        _check_period(period, REPORT_WINDOWS)
        window, default_limit = REPORT_WINDOWS[period]
        limit = default_limit if limit is None else limit
        if limit < 1:
            raise InvalidInput("Report limit must be at least 1", field="limit")

        cutoff = to_iso(self.clock() - window)
        sql = (
            "SELECT b.ID, b.Title, b.Author, b.Genre, "
            "SUM(CASE WHEN l.BorrowedAt >= ? THEN 1 ELSE 0 END) AS PeriodBorrows, "
            "COUNT(*) AS TotalBorrows, MAX(l.BorrowedAt) AS LastBorrowed "
            f"{_LOANS_WITH_BOOKS} "
            "GROUP BY b.ID HAVING PeriodBorrows > 0 "
            "ORDER BY PeriodBorrows DESC, TotalBorrows DESC, b.ID ASC LIMIT ?"
        )
        with storage_errors(f"{period} borrowing report"), self.db.connect() as conn:
            rows = conn.execute(sql, (cutoff, limit)).fetchall()
        logger.debug(f"{period} report since {cutoff}: {len(rows)} books")
        return [
            {
                "book_id": row["ID"],
                "title": row["Title"],
                "author": row["Author"],
                "genre": row["Genre"],
                "period": period,
                "period_borrows": row["PeriodBorrows"],
                "total_borrows": row["TotalBorrows"],
                "last_borrowed": row["LastBorrowed"],
            }
            for row in rows
        ]

    def weekly_report(self) -> List[Dict[str, Any]]:
        return self.popular_books("weekly")

    def monthly_report(self) -> List[Dict[str, Any]]:
        return self.popular_books("monthly")

    def yearly_report(self) -> List[Dict[str, Any]]:
        return self.popular_books("yearly")

    # ------------------------- Grouped reports ------------------------- #
    def genre_report(self) -> List[Dict[str, Any]]:
        """Borrow counts per genre; books without a genre are left out."""
        sql = (
            f"SELECT b.Genre, COUNT(*) AS TotalBorrows, {_WINDOW_COUNTS} "
            f"{_LOANS_WITH_BOOKS} WHERE b.Genre IS NOT NULL "
            "GROUP BY b.Genre ORDER BY TotalBorrows DESC, b.Genre ASC"
        )
        with storage_errors("genre borrowing report"), self.db.connect() as conn:
            rows = conn.execute(sql, self._window_cutoffs()).fetchall()
        return [{"genre": row["Genre"], **self._counts(row)} for row in rows]

    def author_report(self, limit: int = AUTHOR_REPORT_LIMIT) -> List[Dict[str, Any]]:
        """Borrow counts per author, with how many distinct titles were borrowed."""
        if limit < 1:
            raise InvalidInput("Report limit must be at least 1", field="limit")
        sql = (
            f"SELECT b.Author, COUNT(*) AS TotalBorrows, {_WINDOW_COUNTS}, "
            "COUNT(DISTINCT b.ID) AS UniqueBooks "
            f"{_LOANS_WITH_BOOKS} "
            "GROUP BY b.Author ORDER BY TotalBorrows DESC, b.Author ASC LIMIT ?"
        )
        with storage_errors("author borrowing report"), self.db.connect() as conn:
            rows = conn.execute(sql, (*self._window_cutoffs(), limit)).fetchall()
        return [
            {"author": row["Author"], **self._counts(row), "unique_books": row["UniqueBooks"]}
            for row in rows
        ]

    def borrowing_trends(self, period: str = "monthly") -> List[Dict[str, Any]]:
        """Borrows per calendar week (Monday start), month or year, oldest first.

        Only buckets with at least one borrow are returned.
        """
        _check_period(period, TREND_BUCKETS)
        bucket, to_last_day, lookback = TREND_BUCKETS[period]
        modifiers = ", ".join(f"'{m}'" for m in to_last_day)
        cutoff = to_iso(self.clock() - lookback)
        sql = (
            f"SELECT PeriodStart, date(PeriodStart, {modifiers}) AS PeriodEnd, COUNT(*) AS BorrowCount "
            f"FROM (SELECT {bucket} AS PeriodStart FROM loans WHERE BorrowedAt >= ?) "
            "GROUP BY PeriodStart ORDER BY PeriodStart"
        )
        with storage_errors(f"{period} borrowing trends"), self.db.connect() as conn:
            rows = conn.execute(sql, (cutoff,)).fetchall()
        return [
            {"period_start": row["PeriodStart"], "period_end": row["PeriodEnd"], "borrow_count": row["BorrowCount"]}
            for row in rows
        ]

    # ------------------------- Utilities ------------------------- #
    def _window_cutoffs(self) -> tuple:
        now = self.clock()
        return tuple(to_iso(now - window) for window, _ in REPORT_WINDOWS.values())

    @staticmethod
    def _counts(row) -> Dict[str, int]:
        return {
            "total_borrows": row["TotalBorrows"],
            "weekly_borrows": row["WeeklyBorrows"],
            "monthly_borrows": row["MonthlyBorrows"],
            "yearly_borrows": row["YearlyBorrows"],
        }
