"""
In-memory stand-ins for a psycopg connection and cursor.

A FakeCursor is given (sql_fragment, result) rules. The first rule whose fragment
appears in the whitespace-normalized, lower-cased statement answers it. A result
is a list of rows, an int rowcount (for writes with no RETURNING), or a callable
taking the params and returning either. Unmatched SQL fails the test.
"""
from contextlib import contextmanager


def normalize_sql(sql) -> str:
    return " ".join(str(sql or "").lower().split())


class FakeCursor:
    def __init__(self, rules=None):
        self.rules = list(rules or [])
        self.executed = []
        self.rows = []
        self.rowcount = -1

    def execute(self, sql, params=None):
        text = normalize_sql(sql)
        self.executed.append((text, params))
        for fragment, result in self.rules:
            if fragment in text:
                if callable(result):
                    result = result(params)
                if isinstance(result, int):
                    self.rows, self.rowcount = [], result
                else:
                    self.rows = [dict(r) for r in result]
                    self.rowcount = len(self.rows)
                return
        raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        if not self.rows:
            return None
        return self.rows.pop(0)

    def fetchall(self):
        rows, self.rows = self.rows, []
        return rows

    def statements(self, fragment: str):
        return [(t, p) for t, p in self.executed if fragment in t]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeConn:
    def __init__(self, cursor: FakeCursor):
        self._cursor = cursor
        self.commits = 0

    def cursor(self):
        return self._cursor

    @contextmanager
    def transaction(self):
        yield self

    def commit(self):
        self.commits += 1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False
