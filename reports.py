# reports.py
"""
Read-side figures for the dashboard and the reports page.

Everything here is a pure function over already-loaded customers, invoices
and expenses: nothing is cached or written back. Periods are taken from each
record's own `date` (never created_at). Empty inputs produce zero totals and
empty lists; only malformed period arguments raise.
"""
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from errors import ValidationError
from models import Customer, Expense, Invoice, ZERO, money

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
UNKNOWN_CUSTOMER = "Unknown customer"

# label, lower bound (inclusive), upper bound (exclusive, None = open)
AGING_BUCKETS: Tuple[Tuple[str, int, Optional[int]], ...] = (
  ("<10 days", 0, 10),
  ("10-19 days", 10, 20),
  ("20-29 days", 20, 30),
  (">=30 days", 30, None),
)


class Period(str, Enum):
  MONTHLY = "monthly"
  YEARLY = "yearly"


class DashboardStats(BaseModel):
  month: int
  year: int
  monthly_invoice_total: Decimal = ZERO
  monthly_payments_received: Decimal = ZERO
  monthly_expense_total: Decimal = ZERO
  monthly_profit_loss: Decimal = ZERO
  yearly_invoice_total: Decimal = ZERO
  yearly_payments_received: Decimal = ZERO
  yearly_expense_total: Decimal = ZERO
  yearly_profit_loss: Decimal = ZERO
  pending_amount: Decimal = ZERO
  invoice_count: int = 0
  paid_invoice_count: int = 0
  partially_paid_invoice_count: int = 0
  unpaid_invoice_count: int = 0
  customer_count: int = 0
  collection_rate: Decimal = ZERO  # percent of the month's billing already received


class ExpenseLine(BaseModel):
  id: str
  label: str
  amount: Decimal
  date: date


class ExpenseCategory(BaseModel):
  category: str
  total: Decimal
  count: int
  share: Decimal = ZERO
  expenses: List[ExpenseLine] = Field(default_factory=list)


class AgingEntry(BaseModel):
  invoice_id: str
  invoice_number: str
  customer_id: str
  date: date
  days_outstanding: int
  outstanding: Decimal


class AgingBucket(BaseModel):
  label: str
  min_days: int
  max_days: Optional[int] = None
  invoices: List[AgingEntry] = Field(default_factory=list)
  total: Decimal = ZERO


class AgingReport(BaseModel):
  as_of: date
  buckets: List[AgingBucket]
  total_outstanding: Decimal = ZERO


class CustomerTotal(BaseModel):
  customer_id: str
  name: str
  invoice_count: int
  total_amount: Decimal
  share: Decimal = ZERO


def percent(part, whole) -> Decimal:
  """part as a percentage of whole, 0 when whole is 0."""
  whole = Decimal(whole or 0)
  if whole == 0:
    return ZERO
  return money(Decimal(part or 0) * 100 / whole)


def validate_period(year: int, month: Optional[int] = None) -> None:
  if month is not None and not 1 <= month <= 12:
    raise ValidationError(f"month must be between 1 and 12, got {month}")
  if not 1 <= year <= 9999:
    raise ValidationError(f"year must be between 1 and 9999, got {year}")


def as_period(period) -> Period:
  try:
    return Period(period)
  except ValueError:
    raise ValidationError(f"period must be one of: {', '.join(p.value for p in Period)}")


def period_window(period, today: date) -> Tuple[int, Optional[int]]:
  """(year, month) for the current month, or (year, None) for the current year."""
  if as_period(period) is Period.MONTHLY:
    return today.year, today.month
  return today.year, None


def in_period(day: date, year: int, month: Optional[int] = None) -> bool:
  if day is None or day.year != year:
    return False
  return month is None or day.month == month


def _sum(values: Iterable) -> Decimal:
  return sum((money(v) for v in values), ZERO)


def outstanding(invoice: Invoice) -> Decimal:
  return money(invoice.amount) - money(invoice.paid_amount)


def profit_loss(
  invoices: Sequence[Invoice],
  expenses: Sequence[Expense],
  year: int,
  month: Optional[int] = None,
) -> Decimal:
  """Billed minus spent for a month, or for the whole year when month is None."""
  validate_period(year, month)
  billed = _sum(i.amount for i in invoices if in_period(i.date, year, month))
  spent = _sum(e.amount for e in expenses if in_period(e.date, year, month))
  return billed - spent


def dashboard_stats(
  invoices: Sequence[Invoice],
  expenses: Sequence[Expense],
  month: int,
  year: int,
  customer_count: int = 0,
) -> DashboardStats:
  validate_period(year, month)

  monthly_invoices = [i for i in invoices if in_period(i.date, year, month)]
  monthly_expenses = [e for e in expenses if in_period(e.date, year, month)]
  yearly_invoices = [i for i in invoices if in_period(i.date, year)]
  yearly_expenses = [e for e in expenses if in_period(e.date, year)]

  monthly_billed = _sum(i.amount for i in monthly_invoices)
  monthly_received = _sum(i.paid_amount for i in monthly_invoices)
  monthly_spent = _sum(e.amount for e in monthly_expenses)
  yearly_billed = _sum(i.amount for i in yearly_invoices)
  yearly_received = _sum(i.paid_amount for i in yearly_invoices)
  yearly_spent = _sum(e.amount for e in yearly_expenses)

  paid_count = sum(1 for i in monthly_invoices if i.paid)
  unpaid_count = sum(1 for i in monthly_invoices if money(i.paid_amount) == ZERO)

  return DashboardStats(
    month=month,
    year=year,
    monthly_invoice_total=monthly_billed,
    monthly_payments_received=monthly_received,
    monthly_expense_total=monthly_spent,
    monthly_profit_loss=monthly_billed - monthly_spent,
    yearly_invoice_total=yearly_billed,
    yearly_payments_received=yearly_received,
    yearly_expense_total=yearly_spent,
    yearly_profit_loss=yearly_billed - yearly_spent,
    # all-time receivables, not limited to the selected period
    pending_amount=_sum(outstanding(i) for i in invoices),
    invoice_count=len(monthly_invoices),
    paid_invoice_count=paid_count,
    partially_paid_invoice_count=len(monthly_invoices) - paid_count - unpaid_count,
    unpaid_invoice_count=unpaid_count,
    customer_count=customer_count,
    collection_rate=percent(monthly_received, monthly_billed),
  )


def expense_report(
  expenses: Sequence[Expense],
  period=Period.MONTHLY,
  today: Optional[date] = None,
) -> List[ExpenseCategory]:
  """Expenses of the current month or year grouped by label, largest total first."""
  year, month = period_window(period, today or date.today())

  groups: Dict[str, List[Expense]] = defaultdict(list)
  for expense in expenses:
    if in_period(expense.date, year, month):
      groups[(expense.label or "").strip() or UNCATEGORIZED].append(expense)

  grand_total = _sum(e.amount for group in groups.values() for e in group)
  report = []
  for category, items in groups.items():
    total = _sum(e.amount for e in items)
    report.append(ExpenseCategory(
      category=category,
      total=total,
      count=len(items),
      share=percent(total, grand_total),
      expenses=[ExpenseLine(id=e.id, label=e.label, amount=money(e.amount), date=e.date) for e in items],
    ))
  report.sort(key=lambda c: (-c.total, c.category))
  return report


def days_outstanding(invoice_date: date, today: date) -> int:
  return (today - invoice_date).days


def bucket_label(days: int) -> str:
  for label, low, high in AGING_BUCKETS:
    if days < low:
      continue
    if high is None or days < high:
      return label
  # dated in the future
  return AGING_BUCKETS[0][0]


def aging_report(invoices: Sequence[Invoice], today: Optional[date] = None) -> AgingReport:
  """Open invoices bucketed by days since the invoice date."""
  today = today or date.today()
  buckets = {label: AgingBucket(label=label, min_days=low, max_days=high) for label, low, high in AGING_BUCKETS}

  for invoice in sorted(invoices, key=lambda i: (i.date, i.invoice_number)):
    balance = outstanding(invoice)
    if balance <= ZERO:
      continue
    days = days_outstanding(invoice.date, today)
    bucket = buckets[bucket_label(days)]
    bucket.invoices.append(AgingEntry(
      invoice_id=invoice.id,
      invoice_number=invoice.invoice_number,
      customer_id=invoice.customer_id,
      date=invoice.date,
      days_outstanding=days,
      outstanding=balance,
    ))
    bucket.total += balance

  ordered = [buckets[label] for label, _, _ in AGING_BUCKETS]
  return AgingReport(as_of=today, buckets=ordered, total_outstanding=_sum(b.total for b in ordered))


def top_customers(
  invoices: Sequence[Invoice],
  customers: Sequence[Customer],
  period=Period.MONTHLY,
  today: Optional[date] = None,
  limit: int = 5,
) -> List[CustomerTotal]:
  """Customers ranked by amount billed in the current month or year."""
  if limit < 1:
    raise ValidationError(f"limit must be at least 1, got {limit}")
  year, month = period_window(period, today or date.today())
  names = {c.id: c.name for c in customers}

  counts: Dict[str, int] = defaultdict(int)
  totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
  for invoice in invoices:
    if in_period(invoice.date, year, month):
      counts[invoice.customer_id] += 1
      totals[invoice.customer_id] += money(invoice.amount)

  grand_total = _sum(totals.values())
  ranked = [
    CustomerTotal(
      customer_id=customer_id,
      name=names.get(customer_id, UNKNOWN_CUSTOMER),
      invoice_count=counts[customer_id],
      total_amount=total,
      share=percent(total, grand_total),
    )
    for customer_id, total in totals.items()
  ]
  ranked.sort(key=lambda c: (-c.total_amount, c.name, c.customer_id))
  logger.debug("top customers for %s/%s: %d ranked, returning %d", month or "-", year, len(ranked), limit)
  return ranked[:limit]
