# models.py
import datetime as dt
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def money(value) -> Decimal:
  """Coerce a number to a two-decimal Decimal."""
  if value is None:
    return ZERO
  return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _new_id() -> str:
  return str(uuid.uuid4())


def _utcnow() -> dt.datetime:
  return dt.datetime.now(dt.timezone.utc)


class Customer(SQLModel, table=True):
  id: str = Field(default_factory=_new_id, primary_key=True, index=True)
  user_id: str = Field(index=True)
  name: str
  phone: Optional[str] = None
  email: Optional[str] = None
  address: Optional[str] = None


class Invoice(SQLModel, table=True):
  __table_args__ = (UniqueConstraint("user_id", "invoice_number", name="uq_invoice_user_number"),)

  id: str = Field(default_factory=_new_id, primary_key=True, index=True)
  invoice_number: str = Field(index=True)  # FAT000001
  user_id: str = Field(index=True)
  customer_id: str = Field(foreign_key="customer.id", index=True)
  description: Optional[str] = None
  amount: Decimal = Field(max_digits=10, decimal_places=2)
  date: dt.date
  paid_amount: Decimal = Field(default=ZERO, max_digits=10, decimal_places=2)
  paid: bool = False
  created_at: dt.datetime = Field(default_factory=_utcnow)

  @property
  def remaining(self) -> Decimal:
    return self.amount - (self.paid_amount or ZERO)


class Expense(SQLModel, table=True):
  id: str = Field(default_factory=_new_id, primary_key=True, index=True)
  user_id: str = Field(index=True)
  label: str  # doubles as the report category
  amount: Decimal = Field(max_digits=10, decimal_places=2)
  date: dt.date
  created_at: dt.datetime = Field(default_factory=_utcnow)


class Payment(SQLModel, table=True):
  id: str = Field(default_factory=_new_id, primary_key=True, index=True)
  invoice_id: str = Field(foreign_key="invoice.id", index=True)
  amount: Decimal = Field(max_digits=10, decimal_places=2)
  payment_date: dt.date
  notes: Optional[str] = None
  created_at: dt.datetime = Field(default_factory=_utcnow)


class InvoiceSequence(SQLModel, table=True):
  user_id: str = Field(primary_key=True)
  last_value: int = 0


# request bodies

class CustomerCreate(SQLModel):
  name: str = Field(min_length=1)
  phone: Optional[str] = None
  email: Optional[str] = None
  address: Optional[str] = None


class CustomerUpdate(SQLModel):
  name: Optional[str] = Field(default=None, min_length=1)
  phone: Optional[str] = None
  email: Optional[str] = None
  address: Optional[str] = None


class InvoiceCreate(SQLModel):
  customer_id: str
  amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
  date: dt.date
  description: Optional[str] = None
  paid: bool = False  # "fully paid" checkbox on the invoice form


class InvoiceUpdate(SQLModel):
  customer_id: Optional[str] = None
  amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
  date: Optional[dt.date] = None
  description: Optional[str] = None
  paid: Optional[bool] = None


class ExpenseCreate(SQLModel):
  label: str = Field(min_length=1)
  amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
  date: dt.date


class ExpenseUpdate(SQLModel):
  label: Optional[str] = Field(default=None, min_length=1)
  amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
  date: Optional[dt.date] = None


class PaymentCreate(SQLModel):
  invoice_id: str
  amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
  payment_date: dt.date
  notes: Optional[str] = None
