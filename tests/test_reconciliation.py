"""
Tests for payment reconciliation.

Covers:
- paid_amount is the sum of payments, paid flips at the invoice amount
- overpayment and non-positive amounts are rejected without writes
- deleting payments re-derives the balance
- ownership: other users see NotFound
"""

from datetime import date
from decimal import Decimal

import pytest

import reconciliation
from errors import NotFoundError, ValidationError
from invoices import create_invoice
from locks import KeyedLock

USER = "user-1"
OTHER_USER = "user-2"
INVOICE_DATE = date(2026, 10, 1)


@pytest.fixture
def invoice(repo, customer):
  return create_invoice(repo, USER, customer.id, Decimal("1000.00"), INVOICE_DATE)


def _assert_consistent(repo, invoice):
  payments = repo.list_payments(invoice.id)
  total = sum((p.amount for p in payments), Decimal("0"))
  assert invoice.paid_amount == total
  assert Decimal("0") <= invoice.paid_amount <= invoice.amount
  assert invoice.paid == (invoice.paid_amount >= invoice.amount)


class TestAddPayment:
  def test_two_payments_settle_invoice(self, repo, invoice):
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("400.00"), date(2026, 10, 5))
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("600.00"), date(2026, 10, 9))

    invoice = repo.get_invoice(invoice.id)
    assert invoice.paid_amount == Decimal("1000.00")
    assert invoice.paid is True
    assert invoice.remaining == Decimal("0.00")
    _assert_consistent(repo, invoice)

  def test_partial_payment_leaves_invoice_open(self, repo, invoice):
    payment = reconciliation.add_payment(repo, USER, invoice.id, "250.50", date(2026, 10, 5), notes="cash")

    invoice = repo.get_invoice(invoice.id)
    assert payment.amount == Decimal("250.50")
    assert payment.notes == "cash"
    assert invoice.paid_amount == Decimal("250.50")
    assert invoice.paid is False
    assert invoice.remaining == Decimal("749.50")

  def test_overpayment_rejected_without_change(self, repo, invoice):
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("300.00"), date(2026, 10, 5))

    with pytest.raises(ValidationError, match="exceeds the remaining balance"):
      reconciliation.add_payment(repo, USER, invoice.id, Decimal("800.00"), date(2026, 10, 6))

    invoice = repo.get_invoice(invoice.id)
    assert invoice.paid_amount == Decimal("300.00")
    assert len(repo.list_payments(invoice.id)) == 1

  def test_exact_remaining_balance_is_accepted(self, repo, invoice):
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("300.00"), date(2026, 10, 5))
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("700.00"), date(2026, 10, 6))

    assert repo.get_invoice(invoice.id).paid is True

  def test_payment_on_settled_invoice_rejected(self, repo, invoice):
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("1000.00"), date(2026, 10, 5))

    with pytest.raises(ValidationError):
      reconciliation.add_payment(repo, USER, invoice.id, Decimal("0.01"), date(2026, 10, 6))

  @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), "abc", "NaN", "Infinity", Decimal("-Infinity")])
  def test_non_positive_or_invalid_amount_rejected(self, repo, invoice, amount):
    with pytest.raises(ValidationError):
      reconciliation.add_payment(repo, USER, invoice.id, amount, date(2026, 10, 5))
    assert repo.list_payments(invoice.id) == []

  def test_unknown_invoice(self, repo):
    with pytest.raises(NotFoundError):
      reconciliation.add_payment(repo, USER, "missing", Decimal("10"), date(2026, 10, 5))

  def test_other_users_invoice_is_not_found(self, repo, invoice):
    with pytest.raises(NotFoundError):
      reconciliation.add_payment(repo, OTHER_USER, invoice.id, Decimal("10"), date(2026, 10, 5))

  @pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity"])
  def test_parse_amount_rejects_non_finite(self, value):
    with pytest.raises(ValidationError, match="must be a number"):
      reconciliation.parse_amount(value)


class TestDeletePayment:
  def test_delete_recomputes_balance(self, repo, invoice):
    first = reconciliation.add_payment(repo, USER, invoice.id, Decimal("400.00"), date(2026, 10, 5))
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("600.00"), date(2026, 10, 6))

    assert reconciliation.delete_payment(repo, USER, first.id) is True

    invoice = repo.get_invoice(invoice.id)
    assert invoice.paid_amount == Decimal("600.00")
    assert invoice.paid is False
    _assert_consistent(repo, invoice)

  def test_delete_last_payment_resets_to_zero(self, repo, invoice):
    payment = reconciliation.add_payment(repo, USER, invoice.id, Decimal("1000.00"), date(2026, 10, 5))

    reconciliation.delete_payment(repo, USER, payment.id)

    invoice = repo.get_invoice(invoice.id)
    assert invoice.paid_amount == Decimal("0")
    assert invoice.paid is False

  def test_delete_then_readd_restores_balance(self, repo, invoice):
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("200.00"), date(2026, 10, 5))
    payment = reconciliation.add_payment(repo, USER, invoice.id, Decimal("350.00"), date(2026, 10, 6))
    before = repo.get_invoice(invoice.id).paid_amount

    reconciliation.delete_payment(repo, USER, payment.id)
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("350.00"), date(2026, 10, 6))

    assert repo.get_invoice(invoice.id).paid_amount == before

  def test_unknown_payment(self, repo):
    with pytest.raises(NotFoundError):
      reconciliation.delete_payment(repo, USER, "missing")

  def test_other_user_cannot_delete(self, repo, invoice):
    payment = reconciliation.add_payment(repo, USER, invoice.id, Decimal("100.00"), date(2026, 10, 5))

    with pytest.raises(NotFoundError):
      reconciliation.delete_payment(repo, OTHER_USER, payment.id)
    assert repo.get_invoice(invoice.id).paid_amount == Decimal("100.00")


class TestReconcile:
  def test_invariants_hold_through_mixed_operations(self, repo, invoice):
    amounts = ["100.00", "250.00", "50.25", "99.75", "500.00"]
    payments = [
      reconciliation.add_payment(repo, USER, invoice.id, Decimal(a), date(2026, 10, 5))
      for a in amounts
    ]
    _assert_consistent(repo, repo.get_invoice(invoice.id))

    for payment in payments[::2]:
      reconciliation.delete_payment(repo, USER, payment.id)
      _assert_consistent(repo, repo.get_invoice(invoice.id))

    assert repo.get_invoice(invoice.id).paid_amount == Decimal("349.75")

  def test_list_payments_in_date_order(self, repo, invoice):
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("10"), date(2026, 10, 9))
    reconciliation.add_payment(repo, USER, invoice.id, Decimal("20"), date(2026, 10, 2))

    listed = reconciliation.list_payments(repo, USER, invoice.id)

    assert [p.payment_date for p in listed] == [date(2026, 10, 2), date(2026, 10, 9)]

  def test_list_payments_hides_other_users_invoice(self, repo, invoice):
    with pytest.raises(NotFoundError):
      reconciliation.list_payments(repo, OTHER_USER, invoice.id)


class TestKeyedLock:
  def test_entry_lives_only_while_held(self):
    locks = KeyedLock()
    with locks.hold("a"):
      assert len(locks) == 1
      with locks.hold("b"):
        assert len(locks) == 2
    assert len(locks) == 0

  def test_entry_released_when_body_raises(self):
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
      with locks.hold("a"):
        raise RuntimeError("boom")
    assert len(locks) == 0
    with locks.hold("a"):
      pass

  def test_many_keys_do_not_accumulate(self):
    locks = KeyedLock()
    for n in range(1000):
      with locks.hold(f"invoice-{n}"):
        pass
    assert len(locks) == 0

  def test_serializes_writers_on_same_key(self):
    import threading
    import time

    locks = KeyedLock()
    inside = []
    overlap = []

    def writer():
      with locks.hold("invoice-1"):
        inside.append(1)
        if len(inside) > 1:
          overlap.append(True)
        time.sleep(0.01)
        inside.pop()

    threads = [threading.Thread(target=writer) for _ in range(5)]
    for t in threads:
      t.start()
    for t in threads:
      t.join()

    assert overlap == []
    assert len(locks) == 0
