import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from bubble_backend.db import PostgresDbClient, PredictionRow
from bubble_backend.errors import ConflictError, RateLimitError

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")

    def submit(self, days=10, username=None, ip_hash="a" * 64, at=T0):
        return self.db.submit_prediction(
            username=username,
            days_until_pop=days,
            ip_hash=ip_hash,
            submitted_at=at,
            rate_limit_seconds=300,
        )

    def test_submit_and_get_prediction(self):
        record = self.submit(days=30, username="Bob")
        self.assertIsNotNone(record.id)
        fetched = self.db.get_prediction(record.id)
        self.assertIsNotNone(fetched)
        self.assertEqual(fetched.username, "Bob")
        self.assertEqual(fetched.days_until_pop, 30)
        self.assertEqual(fetched.submitted_at, T0)
        self.assertEqual(fetched.predicted_date, T0 + timedelta(days=30))
        self.assertNotIn("ip_hash", fetched.as_dict())

    def test_get_missing_prediction(self):
        self.assertIsNone(self.db.get_prediction(999))

    def test_duplicate_username_is_case_insensitive(self):
        self.submit(username="Alice", ip_hash="1" * 64)
        with self.assertRaises(ConflictError):
            self.submit(username="ALICE", ip_hash="2" * 64)
        self.assertEqual(self.db.get_average(), (10.0, 1))

    def test_null_usernames_do_not_conflict(self):
        self.submit(ip_hash="1" * 64)
        self.submit(ip_hash="2" * 64)
        self.assertEqual(self.db.get_stats().total_predictions, 2)

    def test_rate_limit_window(self):
        self.submit(at=T0)
        with self.assertRaises(RateLimitError):
            self.submit(at=T0 + timedelta(seconds=299))
        # The rejected attempt must not extend the window.
        self.submit(at=T0 + timedelta(seconds=300))
        with self.assertRaises(RateLimitError):
            self.submit(at=T0 + timedelta(seconds=301))
        self.assertEqual(self.db.get_stats().total_predictions, 2)

    def test_rejected_username_does_not_consume_rate_limit(self):
        self.submit(username="Dana", ip_hash="1" * 64)
        with self.assertRaises(ConflictError):
            self.submit(username="dana", ip_hash="2" * 64)
        self.submit(username="Erin", ip_hash="2" * 64)

    def test_unique_index_catches_racing_duplicate(self):
        self.submit(username="Frank", ip_hash="1" * 64)
        # Simulate a concurrent request that passed the pre-check before the
        # first insert committed.
        with patch.object(
            PostgresDbClient, "_username_taken", side_effect=[False, True]
        ):
            with self.assertRaises(ConflictError):
                self.submit(username="frank", ip_hash="2" * 64)
        self.assertEqual(self.db.get_stats().total_predictions, 1)

    def test_days_range_enforced_by_storage(self):
        with self.assertRaises(IntegrityError):
            with self.db.Session() as session, session.begin():
                session.add(
                    PredictionRow(
                        username=None,
                        days_until_pop=0,
                        submitted_at=T0,
                        predicted_date=T0,
                        ip_hash="f" * 64,
                    )
                )

    def test_average_and_stats(self):
        self.assertEqual(self.db.get_average(), (None, 0))
        empty = self.db.get_stats()
        self.assertEqual(empty.as_dict(), {
            "total_predictions": 0,
            "avg_days": None,
            "min_days": None,
            "max_days": None,
        })

        for index, days in enumerate((5, 7, 30)):
            self.submit(days=days, ip_hash=str(index) * 64)
        self.assertEqual(self.db.get_average(), (14.0, 3))
        stats = self.db.get_stats()
        self.assertEqual(stats.total_predictions, 3)
        self.assertEqual(stats.avg_days, 14.0)
        self.assertEqual(stats.min_days, 5)
        self.assertEqual(stats.max_days, 30)


if __name__ == "__main__":
    unittest.main()
