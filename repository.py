# repository.py
from decimal import Decimal
from typing import List, Optional, Protocol, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from errors import ConflictError
from models import Customer, Expense, Invoice, InvoiceSequence, Payment, ZERO

T = TypeVar("T", bound=SQLModel)


class LedgerRepository(Protocol):
  """Storage the ledger services depend on.

  Writes are staged with add/delete and made durable by commit; reads inside
  the same unit of work see staged changes.
  """

  def get_customer(self, customer_id: str) -> Optional[Customer]: ...
  def list_customers(self, user_id: str) -> List[Customer]: ...
  def count_invoices_for_customer(self, customer_id: str) -> int: ...

  def get_invoice(self, invoice_id: str, for_update: bool = False) -> Optional[Invoice]: ...
  def list_invoices(self, user_id: str) -> List[Invoice]: ...
  def next_invoice_sequence(self, user_id: str) -> int: ...

  def get_expense(self, expense_id: str) -> Optional[Expense]: ...
  def list_expenses(self, user_id: str) -> List[Expense]: ...

  def get_payment(self, payment_id: str, fresh: bool = False) -> Optional[Payment]: ...
  def list_payments(self, invoice_id: str) -> List[Payment]: ...
  def sum_payments(self, invoice_id: str) -> Decimal: ...

  def add(self, obj: T) -> T: ...
  def delete(self, obj: SQLModel) -> None: ...
  def flush(self) -> None: ...
  def commit(self) -> None: ...
  def rollback(self) -> None: ...
  def refresh(self, obj: SQLModel) -> None: ...


class SqlLedgerRepository:
  """LedgerRepository backed by a SQLModel session."""

  def __init__(self, session: Session):
    self.session = session

  # customers

  def get_customer(self, customer_id: str) -> Optional[Customer]:
    return self.session.get(Customer, customer_id)

  def list_customers(self, user_id: str) -> List[Customer]:
    stmt = select(Customer).where(Customer.user_id == user_id).order_by(Customer.name)
    return list(self.session.exec(stmt).all())

  def count_invoices_for_customer(self, customer_id: str) -> int:
    stmt = select(func.count()).select_from(Invoice).where(Invoice.customer_id == customer_id)
    return self.session.exec(stmt).one()

  # invoices

  def get_invoice(self, invoice_id: str, for_update: bool = False) -> Optional[Invoice]:
    stmt = select(Invoice).where(Invoice.id == invoice_id)
    if for_update:
      # ignored by sqlite, row lock on postgres
      stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return self.session.exec(stmt).first()

  def list_invoices(self, user_id: str) -> List[Invoice]:
    stmt = (
      select(Invoice)
      .where(Invoice.user_id == user_id)
      .order_by(Invoice.date.desc(), Invoice.invoice_number.desc())
    )
    return list(self.session.exec(stmt).all())

  def next_invoice_sequence(self, user_id: str) -> int:
    stmt = (
      select(InvoiceSequence)
      .where(InvoiceSequence.user_id == user_id)
      .with_for_update()
      .execution_options(populate_existing=True)
    )
    seq = self.session.exec(stmt).first()
    if seq is None:
      seq = InvoiceSequence(user_id=user_id, last_value=self._highest_invoice_number(user_id))
    seq.last_value += 1
    self.session.add(seq)
    self.flush()
    return seq.last_value

  def _highest_invoice_number(self, user_id: str) -> int:
    # users whose invoices predate the sequence table continue from their highest number
    numbers = self.session.exec(select(Invoice.invoice_number).where(Invoice.user_id == user_id)).all()
    highest = 0
    for number in numbers:
      digits = (number or "")[3:]
      if digits.isdigit():
        highest = max(highest, int(digits))
    return highest

  # expenses

  def get_expense(self, expense_id: str) -> Optional[Expense]:
    return self.session.get(Expense, expense_id)

  def list_expenses(self, user_id: str) -> List[Expense]:
    stmt = select(Expense).where(Expense.user_id == user_id).order_by(Expense.date.desc())
    return list(self.session.exec(stmt).all())

  # payments

  def get_payment(self, payment_id: str, fresh: bool = False) -> Optional[Payment]:
    # fresh skips the identity map so a row deleted by another session reads as None
    return self.session.get(Payment, payment_id, populate_existing=fresh)

  def list_payments(self, invoice_id: str) -> List[Payment]:
    stmt = (
      select(Payment)
      .where(Payment.invoice_id == invoice_id)
      .order_by(Payment.payment_date, Payment.created_at)
    )
    return list(self.session.exec(stmt).all())

  def sum_payments(self, invoice_id: str) -> Decimal:
    return sum((p.amount for p in self.list_payments(invoice_id)), ZERO)

  # unit of work

  def add(self, obj: T) -> T:
    self.session.add(obj)
    return obj

  def delete(self, obj: SQLModel) -> None:
    self.session.delete(obj)

  def flush(self) -> None:
    try:
      self.session.flush()
    except IntegrityError as e:
      raise ConflictError(f"Write rejected by a database constraint: {e.orig}") from e

  def commit(self) -> None:
    try:
      self.session.commit()
    except IntegrityError as e:
      raise ConflictError(f"Write rejected by a database constraint: {e.orig}") from e

  def rollback(self) -> None:
    self.session.rollback()

  def refresh(self, obj: SQLModel) -> None:
    self.session.refresh(obj)
