# invoices.py
import logging
from datetime import date
from typing import Any, Dict, Optional

from errors import ConflictError, ValidationError
from locks import invoice_locks, user_locks
from models import Customer, Invoice, ZERO, money
from reconciliation import clear_payments, owned_invoice, parse_amount, reconcile_invoice, settle_invoice
from repository import LedgerRepository

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "FAT"
MAX_NUMBER_ATTEMPTS = 3

PATCHABLE_FIELDS = {"customer_id", "description", "amount", "date", "paid"}
READONLY_FIELDS = {"id", "invoice_number", "user_id", "created_at", "paid_amount"}


def format_invoice_number(sequence: int) -> str:
  return f"{INVOICE_PREFIX}{sequence:06d}"


def require_customer(repo: LedgerRepository, user_id: str, customer_id: Optional[str]) -> Customer:
  customer = repo.get_customer(customer_id) if customer_id else None
  if customer is None or customer.user_id != user_id:
    raise ValidationError(f"Customer {customer_id} does not exist")
  return customer


def get_invoice(repo: LedgerRepository, user_id: str, invoice_id: str) -> Invoice:
  return owned_invoice(repo, user_id, invoice_id)


def create_invoice(
  repo: LedgerRepository,
  user_id: str,
  customer_id: str,
  amount,
  invoice_date: date,
  description: Optional[str] = None,
  paid: bool = False,
) -> Invoice:
  """Create an invoice numbered FAT000001, FAT000002, ... per user.

  With paid=True the invoice is settled straight away by a single payment
  for the full amount dated on the invoice date.
  """
  amount = parse_amount(amount)
  if invoice_date is None:
    raise ValidationError("date is required")
  require_customer(repo, user_id, customer_id)

  with user_locks.hold(user_id):
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
      try:
        number = format_invoice_number(repo.next_invoice_sequence(user_id))
        invoice = repo.add(Invoice(
          invoice_number=number,
          user_id=user_id,
          customer_id=customer_id,
          description=description or None,
          amount=amount,
          date=invoice_date,
          paid_amount=ZERO,
          paid=False,
        ))
        repo.flush()
        if paid:
          settle_invoice(repo, invoice, payment_date=invoice_date)
        repo.commit()
      except ConflictError:
        repo.rollback()
        logger.warning("invoice number clash for user %s (attempt %d/%d)", user_id, attempt, MAX_NUMBER_ATTEMPTS)
        continue
      except Exception:
        repo.rollback()
        raise
      repo.refresh(invoice)
      logger.info("invoice %s created for user %s, amount %s, paid=%s", invoice.invoice_number, user_id, amount, invoice.paid)
      return invoice

  raise ConflictError("Could not assign an invoice number, please retry")


def update_invoice(
  repo: LedgerRepository,
  user_id: str,
  invoice_id: str,
  patch: Dict[str, Any],
  today: Optional[date] = None,
) -> Invoice:
  """Apply a partial update.

  paid=True settles the remaining balance with one payment, paid=False
  deletes every payment on the invoice. Either way paid_amount stays the sum
  of the invoice's payments.
  """
  readonly = READONLY_FIELDS.intersection(patch)
  if readonly:
    raise ValidationError(f"Cannot change {', '.join(sorted(readonly))}")
  unknown = set(patch) - PATCHABLE_FIELDS
  if unknown:
    raise ValidationError(f"Unknown invoice fields: {', '.join(sorted(unknown))}")

  with invoice_locks.hold(invoice_id):
    invoice = owned_invoice(repo, user_id, invoice_id, for_update=True)

    new_amount = parse_amount(patch["amount"]) if "amount" in patch else money(invoice.amount)
    if "customer_id" in patch:
      require_customer(repo, user_id, patch["customer_id"])
    if "date" in patch and patch["date"] is None:
      raise ValidationError("date is required")
    paid = patch.get("paid")
    if paid is not False and new_amount < money(invoice.paid_amount):
      raise ValidationError(
        f"Amount {new_amount} is below the {invoice.paid_amount} already paid on {invoice.invoice_number}"
      )

    for field in ("customer_id", "description", "date"):
      if field in patch:
        setattr(invoice, field, patch[field])
    invoice.amount = new_amount

    try:
      if paid is True:
        settle_invoice(repo, invoice, payment_date=today or date.today())
      elif paid is False:
        removed = clear_payments(repo, invoice)
        if removed:
          logger.info("invoice %s marked unpaid, %d payment(s) removed", invoice.invoice_number, removed)
      else:
        reconcile_invoice(repo, invoice)
      repo.commit()
    except Exception:
      repo.rollback()
      raise
    repo.refresh(invoice)

  logger.info("invoice %s updated: %s", invoice.invoice_number, ", ".join(sorted(patch)) or "no changes")
  return invoice


def delete_invoice(repo: LedgerRepository, user_id: str, invoice_id: str) -> bool:
  with invoice_locks.hold(invoice_id):
    invoice = owned_invoice(repo, user_id, invoice_id, for_update=True)
    number = invoice.invoice_number
    payments = repo.list_payments(invoice.id)
    try:
      for payment in payments:
        repo.delete(payment)
      repo.flush()
      repo.delete(invoice)
      repo.commit()
    except Exception:
      repo.rollback()
      raise

  logger.info("invoice %s deleted with %d payment(s)", number, len(payments))
  return True
