from datetime import date
from decimal import Decimal

import pytest

import backend.app.sale_submission as submission
from backend.app.errors import CompensationFailedError, InsufficientStockError, InvalidInputError, PersistenceError
from backend.app.lot_allocation import LotCandidate
from backend.app.sale_submission import AllocatedLine, PgSaleWriter, SaleDraft, SaleLineDraft, submit_sale


def _lot(lot_id, product_id, remaining, expiry=None):
    return LotCandidate(
        id=lot_id,
        product_id=product_id,
        warehouse_id="w1",
        current_remaining=Decimal(str(remaining)),
        expiry_date=expiry,
    )


LOTS = {
    "p1": [_lot("A", "p1", 5, date(2025, 1, 1)), _lot("B", "p1", 3, date(2025, 6, 1))],
    "p2": [_lot("C", "p2", "1.5")],
}


def _load(product_id, warehouse_id):
    return list(LOTS.get(product_id, []))


def _draft(*lines):
    return SaleDraft(
        lines=list(lines),
        sale_date=date(2026, 1, 10),
        subtotal=Decimal("100"),
        tax=Decimal("21"),
        total=Decimal("121"),
        client_id="c1",
    )


class _FakeWriter:
    def __init__(self, *, lines_error=None, delete_error=None):
        self.calls = []
        self.lines_error = lines_error
        self.delete_error = delete_error

    def insert_sale(self, draft):
        self.calls.append(("insert_sale", draft.client_id))
        return "s1"

    def insert_sale_lines(self, sale_id, lines):
        self.calls.append(("insert_sale_lines", sale_id, list(lines)))
        if self.lines_error:
            raise PersistenceError(self.lines_error)

    def delete_sale(self, sale_id):
        self.calls.append(("delete_sale", sale_id))
        if self.delete_error:
            raise PersistenceError(self.delete_error)


def test_submit_sale_writes_header_then_fefo_lines():
    writer = _FakeWriter()
    sale_id = submit_sale(
        _draft(SaleLineDraft("p1", 6, Decimal("10")), SaleLineDraft("p2", 1, Decimal("4.5"))),
        _load,
        writer,
    )
    assert sale_id == "s1"
    assert [c[0] for c in writer.calls] == ["insert_sale", "insert_sale_lines"]
    assert writer.calls[1][2] == [
        AllocatedLine("p1", "A", 5, Decimal("10")),
        AllocatedLine("p1", "B", 1, Decimal("10")),
        AllocatedLine("p2", "C", 1, Decimal("4.5")),
    ]


def test_failing_second_line_writes_nothing():
    writer = _FakeWriter()
    with pytest.raises(InsufficientStockError) as exc:
        submit_sale(
            _draft(
                SaleLineDraft("p1", 2, Decimal("10")),
                SaleLineDraft("p2", 2, Decimal("4.5"), product_name="Serum"),
            ),
            _load,
            writer,
        )
    assert exc.value.product_id == "p2"
    assert exc.value.available == 1
    assert "Serum" in exc.value.message
    assert writer.calls == []


def test_empty_sale_is_rejected():
    writer = _FakeWriter()
    with pytest.raises(InvalidInputError):
        submit_sale(_draft(), _load, writer)
    assert writer.calls == []


def test_line_failure_deletes_header_and_reraises_original_error():
    writer = _FakeWriter(lines_error='new row for relation "sale_items" violates check constraint')
    with pytest.raises(PersistenceError) as exc:
        submit_sale(_draft(SaleLineDraft("p1", 1, Decimal("10"))), _load, writer)
    assert exc.value.message == 'new row for relation "sale_items" violates check constraint'
    assert not isinstance(exc.value, CompensationFailedError)
    assert [c[0] for c in writer.calls] == ["insert_sale", "insert_sale_lines", "delete_sale"]
    assert writer.calls[2] == ("delete_sale", "s1")


def test_failed_compensation_surfaces_delete_error():
    writer = _FakeWriter(lines_error="lines exploded", delete_error="permission denied for table sales")
    with pytest.raises(CompensationFailedError) as exc:
        submit_sale(_draft(SaleLineDraft("p1", 1, Decimal("10"))), _load, writer)
    err = exc.value
    assert err.message == "permission denied for table sales"
    assert err.original_error == "lines exploded"
    assert err.sale_id == "s1"
    assert err.to_dict()["kind"] == "compensation_failed"


def test_submission_logs_allocations(monkeypatch):
    events = []
    monkeypatch.setattr(submission, "json_log", lambda level, event, **fields: events.append(event))
    submit_sale(_draft(SaleLineDraft("p1", 6, Decimal("10"))), _load, _FakeWriter())
    assert events == ["sale.lot_allocated", "sale.lot_allocated", "sale.created"]


class _DummyCursor:
    def __init__(self, row=None):
        self._row = row
        self.executed = []
        self.batches = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def executemany(self, sql, rows):
        self.batches.append((sql, list(rows)))

    def fetchone(self):
        return self._row


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cur


def test_pg_writer_sets_context_and_writes_each_step():
    cur = _DummyCursor(row={"id": "sale-9"})
    contexts = []
    writer = PgSaleWriter(lambda: _DummyConn(cur), user_id="u1", set_context=lambda conn, uid: contexts.append(uid))

    sale_id = writer.insert_sale(_draft(SaleLineDraft("p1", 1, Decimal("10"))))
    writer.insert_sale_lines(sale_id, [AllocatedLine("p1", "A", 2, Decimal("10"))])
    writer.delete_sale(sale_id)

    assert sale_id == "sale-9"
    assert contexts == ["u1", "u1", "u1"]
    assert "INSERT INTO sales" in cur.executed[0][0]
    assert cur.batches[0][1] == [("sale-9", "p1", "A", 2, Decimal("10"))]
    assert cur.executed[1] == ("DELETE FROM sales WHERE id = %s", ("sale-9",))
