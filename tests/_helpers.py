import re
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from quote_engine import (
    AddOns,
    HotelOption,
    OccupancySelection,
    PaxComposition,
    QuoteDraft,
    StayPeriod,
    TourSelection,
)


CHECK_IN = date(2026, 3, 5)
CHECK_OUT = date(2026, 3, 8)


def make_draft(
    adults=2,
    cwb=0,
    cnb=0,
    infants=0,
    rate='500',
    extra_bed_rate='150',
    nights=3,
    occupancy=None,
    hotels=None,
    tours=(),
    add_ons=None,
    customer_name='Test Guest',
    inclusions=(),
):
    check_in = CHECK_IN
    check_out = date.fromordinal(check_in.toordinal() + nights)
    if hotels is None:
        hotels = (HotelOption(
            id='h1',
            name='Hotel A',
            rate=Decimal(rate) if rate is not None else None,
            extra_bed_rate=Decimal(extra_bed_rate),
        ),)
    return QuoteDraft(
        stay=StayPeriod(check_in=check_in, check_out=check_out),
        pax=PaxComposition(adults=adults, cwb=cwb, cnb=cnb, infants=infants),
        occupancy=occupancy or OccupancySelection(double=True),
        hotels=tuple(hotels),
        tours=tuple(tours),
        add_ons=add_ons or AddOns(),
        customer_name=customer_name,
        inclusions=tuple(inclusions),
    )


def group_tour(name='Desert Safari', cost='150'):
    return TourSelection(id='t1', name=name, cost_per_person=Decimal(cost))


def private_tour(name='Abu Dhabi City Tour', cost='100', transfer='300'):
    return TourSelection(
        id='t2',
        name=name,
        cost_per_person=Decimal(cost),
        type='private',
        transfer_cost=Decimal(transfer),
    )


class DummyCursor:
    """
    psycopg2 cursor stand-in.

    SELECT/UPDATE/DELETE results come from ``responses``: the first entry whose
    SQL fragment appears in the statement wins. INSERT ... RETURNING * echoes
    the inserted columns back with an id.
    """

    _insert_re = re.compile(r"INSERT INTO (\w+)\s*\(([^)]*)\)", re.IGNORECASE)

    def __init__(self, connection):
        self.connection = connection
        self.description = []
        self._rows = []

    def execute(self, sql, params=None):
        self.connection.executed.append((sql, params))
        params = list(params or [])

        for fragment, rows in self.connection.responses:
            if fragment in sql:
                self._set_rows([dict(r) for r in rows])
                return

        match = self._insert_re.search(sql)
        if match and 'RETURNING' in sql:
            cols = [c.strip() for c in match.group(2).split(',')]
            row = {'id': self.connection.next_id()}
            row.update(zip(cols, params))
            self._set_rows([row])
            return

        self._set_rows([])

    def _set_rows(self, rows):
        if rows:
            keys = list(rows[0].keys())
            self.description = [(k,) for k in keys]
            self._rows = [tuple(r.get(k) for k in keys) for r in rows]
        else:
            self.description = []
            self._rows = []

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        pass


class DummyConnection:
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.executed = []
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self._id = 0

    def next_id(self):
        self._id += 1
        return self._id

    def cursor(self):
        return DummyCursor(self)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True

    def statements(self):
        return [sql for sql, _params in self.executed]
