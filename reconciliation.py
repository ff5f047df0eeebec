# reconciliation.py
"""
Keeps an invoice's paid_amount / paid fields in step with its payments.

paid_amount is always re-derived from the full set of payments on the
invoice (never incremented), and paid is true once paid_amount reaches the
invoice amount. Writers for one invoice are serialized through
locks.invoice_locks plus a row lock where the database supports one, so the
remaining-balance check and the insert cannot interleave with another
payment on the same invoice.
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from errors import ConflictError, NotFoundError, ValidationError
from locks import invoice_locks
from models import Invoice, Payment, ZERO, money
from repository import LedgerRepository

logger = logging.getLogger(__name__)

SETTLEMENT_NOTE = "Marked as fully paid"


def parse_amount(value, field: str = "amount") -> Decimal:
  try:
    amount = money(value)
  except (InvalidOperation, TypeError, ValueError):
    raise ValidationError(f"{field} must be a number")
  if not amount.is_finite():
    raise ValidationError(f"{field} must be a number")
  if amount <= ZERO:
    raise ValidationError(f"{field} must be greater than zero")
  return amount


def owned_invoice(repo: LedgerRepository, user_id: str, invoice_id: str, for_update: bool = False) -> Invoice:
  invoice = repo.get_invoice(invoice_id, for_update=for_update)
  if invoice is None or invoice.user_id != user_id:
    raise NotFoundError(f"Invoice {invoice_id} not found")
  return invoice


def reconcile_invoice(repo: LedgerRepository, invoice: Invoice) -> Invoice:
  """Recompute paid_amount and paid from every payment recorded on the invoice."""
  total = money(repo.sum_payments(invoice.id))
  amount = money(invoice.amount)
  if total > amount:
    # only reachable if rows were written around this module
    raise ConflictError(f"Payments on invoice {invoice.invoice_number} ({total}) exceed its amount ({amount})")
  invoice.paid_amount = total
  invoice.paid = total >= amount
  repo.add(invoice)
  return invoice


def list_payments(repo: LedgerRepository, user_id: str, invoice_id: str) -> List[Payment]:
  owned_invoice(repo, user_id, invoice_id)
  return repo.list_payments(invoice_id)


def add_payment(
  repo: LedgerRepository,
  user_id: str,
  invoice_id: str,
  amount,
  payment_date: date,
  notes: Optional[str] = None,
) -> Payment:
  amount = parse_amount(amount)
  if payment_date is None:
    raise ValidationError("payment_date is required")

  with invoice_locks.hold(invoice_id):
    invoice = owned_invoice(repo, user_id, invoice_id, for_update=True)
    remaining = money(invoice.amount) - money(invoice.paid_amount)
    if amount > remaining:
      raise ValidationError(
        f"Payment of {amount} exceeds the remaining balance {remaining} on invoice {invoice.invoice_number}"
      )

    payment = repo.add(Payment(invoice_id=invoice.id, amount=amount, payment_date=payment_date, notes=notes or None))
    try:
      reconcile_invoice(repo, invoice)
      repo.commit()
    except Exception:
      repo.rollback()
      raise
    repo.refresh(payment)
    repo.refresh(invoice)

  logger.info(
    "payment %s of %s on invoice %s, paid %s of %s",
    payment.id, amount, invoice.invoice_number, invoice.paid_amount, invoice.amount,
  )
  return payment


def delete_payment(repo: LedgerRepository, user_id: str, payment_id: str) -> bool:
  payment = repo.get_payment(payment_id)
  if payment is None:
    raise NotFoundError(f"Payment {payment_id} not found")

  with invoice_locks.hold(payment.invoice_id):
    payment = repo.get_payment(payment_id, fresh=True)
    if payment is None:
      raise NotFoundError(f"Payment {payment_id} not found")
    invoice = repo.get_invoice(payment.invoice_id, for_update=True)
    if invoice is None or invoice.user_id != user_id:
      raise NotFoundError(f"Payment {payment_id} not found")

    repo.delete(payment)
    try:
      repo.flush()
      reconcile_invoice(repo, invoice)
      repo.commit()
    except Exception:
      repo.rollback()
      raise

  logger.info("payment %s removed from invoice %s", payment_id, invoice.invoice_number)
  return True


def settle_invoice(
  repo: LedgerRepository,
  invoice: Invoice,
  payment_date: date,
  notes: str = SETTLEMENT_NOTE,
) -> Optional[Payment]:
  """Record one payment for whatever is still owed. Caller holds the invoice lock and commits."""
  remaining = money(invoice.amount) - money(repo.sum_payments(invoice.id))
  if remaining <= ZERO:
    reconcile_invoice(repo, invoice)
    return None
  payment = repo.add(Payment(invoice_id=invoice.id, amount=remaining, payment_date=payment_date, notes=notes))
  reconcile_invoice(repo, invoice)
  return payment


def clear_payments(repo: LedgerRepository, invoice: Invoice) -> int:
  """Delete every payment on the invoice. Caller holds the invoice lock and commits."""
  payments = repo.list_payments(invoice.id)
  for payment in payments:
    repo.delete(payment)
  repo.flush()
  reconcile_invoice(repo, invoice)
  return len(payments)
