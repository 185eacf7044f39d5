"""
Tests for Store.

The cursor-call checks use a connection double; the rest need the test
database.

Run with: NAUTICAL_ENV=test pytest src/nautical/db_test.py -v
"""

from unittest.mock import MagicMock

from nautical.config import config
from nautical.db import Store

SERIES = "SELECT n FROM generate_series(1, 1000) AS n"


def open_scan_cursors(conn) -> int:
    """Helper to count the scan cursors open on ``conn``'s session."""
    with conn.cursor() as cur:
        cur.execute("SELECT count(*) FROM pg_cursors WHERE name LIKE 'nautical_scan_%'")
        return cur.fetchone()[0]


class TestIterRows:
    """Tests for Store.iter_rows()"""

    def test_uses_named_cursor(self):
        conn = MagicMock()
        cur = conn.cursor.return_value.__enter__.return_value
        cur.__iter__.return_value = iter([{"n": 1}, {"n": 2}])
        store = Store.from_connection(conn)

        assert list(store.iter_rows(SERIES, (1,))) == [{"n": 1}, {"n": 2}]

        name = conn.cursor.call_args.kwargs["name"]
        assert name.startswith("nautical_scan_")
        assert cur.itersize == config.scan_batch_size
        cur.execute.assert_called_once_with(SERIES, (1,))

    def test_each_scan_gets_a_fresh_cursor_name(self):
        conn = MagicMock()
        store = Store.from_connection(conn)

        list(store.iter_rows(SERIES, batch_size=10))
        list(store.iter_rows(SERIES, batch_size=10))

        first, second = (c.kwargs["name"] for c in conn.cursor.call_args_list)
        assert first != second
        assert conn.cursor.return_value.__enter__.return_value.itersize == 10

    def test_rows_come_from_a_server_side_cursor(self, store, db_connection):
        rows = store.iter_rows(SERIES, batch_size=10)

        assert next(rows) == {"n": 1}
        assert open_scan_cursors(db_connection) == 1

        assert [row["n"] for row in rows] == list(range(2, 1001))
        assert open_scan_cursors(db_connection) == 0

    def test_close_releases_cursor(self, store, db_connection):
        rows = store.iter_rows(SERIES, batch_size=10)
        next(rows)

        rows.close()

        assert open_scan_cursors(db_connection) == 0
        assert store.fetch_one("SELECT 1 AS one") == {"one": 1}

    def test_concurrent_scans_get_distinct_cursors(self, store, db_connection):
        first = store.iter_rows(SERIES, batch_size=10)
        second = store.iter_rows(SERIES, batch_size=10)

        assert next(first) == next(second) == {"n": 1}
        assert open_scan_cursors(db_connection) == 2

        first.close()
        second.close()


class TestQueryHelpers:
    """Tests for Store.execute() and Store.fetch_all()"""

    def test_execute_returns_rowcount(self, store):
        store.execute("CREATE TEMP TABLE scratch (n int)")

        assert store.execute("INSERT INTO scratch SELECT generate_series(1, 3)") == 3
        assert store.execute("UPDATE scratch SET n = n + 1 WHERE n > %s", (1,)) == 2
        assert store.execute("DELETE FROM scratch WHERE n > %s", (100,)) == 0

    def test_fetch_all(self, store):
        assert store.fetch_all("SELECT n FROM generate_series(1, 3) AS n") == [
            {"n": 1},
            {"n": 2},
            {"n": 3},
        ]
        assert store.fetch_all("SELECT 1 AS n WHERE false") == []
