# billing_route.py
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlmodel import Session

import invoices as invoice_service
import reconciliation
import reports
from db import get_session
from errors import ConflictError, LedgerError, NotFoundError
from models import (
  Customer, CustomerCreate, CustomerUpdate,
  Expense, ExpenseCreate, ExpenseUpdate,
  Invoice, InvoiceCreate, InvoiceUpdate,
  Payment, PaymentCreate,
)
from repository import SqlLedgerRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


def get_repository(session: Session = Depends(get_session)) -> SqlLedgerRepository:
  return SqlLedgerRepository(session)

def current_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
  # set by the authentication layer in front of this service
  user_id = x_user_id.strip()
  if not user_id:
    raise HTTPException(status_code=401, detail="Missing user")
  return user_id

def _http_error(e: LedgerError) -> HTTPException:
  if not isinstance(e, NotFoundError):
    logger.warning("%s: %s", type(e).__name__, e.message)
  return HTTPException(status_code=e.status_code, detail=e.message)

def _match(q: str, *values: Optional[str]) -> bool:
  ql = q.strip().lower()
  return any(ql in (v or "").lower() for v in values)


# customers

def _owned_customer(repo: SqlLedgerRepository, user_id: str, customer_id: str) -> Customer:
  customer = repo.get_customer(customer_id)
  if not customer or customer.user_id != user_id:
    raise HTTPException(status_code=404, detail="Customer not found")
  return customer

@router.get("/customers", response_model=List[Customer])
def list_customers(
  q: Optional[str] = None,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  rows = repo.list_customers(user_id)
  if not q:
    return rows
  return [r for r in rows if _match(q, r.name, r.phone, r.email)]

@router.post("/customers", response_model=Customer)
def create_customer(
  data: CustomerCreate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  customer = repo.add(Customer(user_id=user_id, **data.model_dump()))
  repo.commit()
  repo.refresh(customer)
  return customer

@router.put("/customers/{customer_id}", response_model=Customer)
def update_customer(
  customer_id: str,
  data: CustomerUpdate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  customer = _owned_customer(repo, user_id, customer_id)
  for field, value in data.model_dump(exclude_unset=True).items():
    if field == "name" and value is None:
      raise HTTPException(status_code=400, detail="Customer name is required")
    setattr(customer, field, value)
  repo.add(customer)
  repo.commit()
  repo.refresh(customer)
  return customer

@router.delete("/customers/{customer_id}")
def delete_customer(
  customer_id: str,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  customer = _owned_customer(repo, user_id, customer_id)
  if repo.count_invoices_for_customer(customer_id):
    raise _http_error(ConflictError("Customer still has invoices, delete them first"))
  repo.delete(customer)
  repo.commit()
  return {"success": True}


# invoices

@router.get("/invoices", response_model=List[Invoice])
def list_invoices(
  q: Optional[str] = None,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  rows = repo.list_invoices(user_id)
  if not q:
    return rows
  return [r for r in rows if _match(q, r.invoice_number, r.description)]

@router.get("/invoices/{invoice_id}", response_model=Invoice)
def get_invoice(
  invoice_id: str,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return invoice_service.get_invoice(repo, user_id, invoice_id)
  except LedgerError as e:
    raise _http_error(e)

@router.post("/invoices", response_model=Invoice)
def create_invoice(
  data: InvoiceCreate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return invoice_service.create_invoice(
      repo, user_id,
      customer_id=data.customer_id,
      amount=data.amount,
      invoice_date=data.date,
      description=data.description,
      paid=data.paid,
    )
  except LedgerError as e:
    raise _http_error(e)

@router.put("/invoices/{invoice_id}", response_model=Invoice)
def update_invoice(
  invoice_id: str,
  data: InvoiceUpdate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return invoice_service.update_invoice(repo, user_id, invoice_id, data.model_dump(exclude_unset=True))
  except LedgerError as e:
    raise _http_error(e)

@router.delete("/invoices/{invoice_id}")
def delete_invoice(
  invoice_id: str,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return {"success": invoice_service.delete_invoice(repo, user_id, invoice_id)}
  except LedgerError as e:
    raise _http_error(e)


# expenses

def _owned_expense(repo: SqlLedgerRepository, user_id: str, expense_id: str) -> Expense:
  expense = repo.get_expense(expense_id)
  if not expense or expense.user_id != user_id:
    raise HTTPException(status_code=404, detail="Expense not found")
  return expense

@router.get("/expenses", response_model=List[Expense])
def list_expenses(
  q: Optional[str] = None,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  rows = repo.list_expenses(user_id)
  if not q:
    return rows
  return [r for r in rows if _match(q, r.label)]

@router.post("/expenses", response_model=Expense)
def create_expense(
  data: ExpenseCreate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  expense = repo.add(Expense(user_id=user_id, label=data.label.strip(), amount=data.amount, date=data.date))
  repo.commit()
  repo.refresh(expense)
  return expense

@router.put("/expenses/{expense_id}", response_model=Expense)
def update_expense(
  expense_id: str,
  data: ExpenseUpdate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  expense = _owned_expense(repo, user_id, expense_id)
  for field, value in data.model_dump(exclude_unset=True).items():
    if value is None:
      raise HTTPException(status_code=400, detail=f"Expense {field} is required")
    setattr(expense, field, value)
  repo.add(expense)
  repo.commit()
  repo.refresh(expense)
  return expense

@router.delete("/expenses/{expense_id}")
def delete_expense(
  expense_id: str,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  repo.delete(_owned_expense(repo, user_id, expense_id))
  repo.commit()
  return {"success": True}


# payments

@router.get("/payments/{invoice_id}", response_model=List[Payment])
def list_payments(
  invoice_id: str,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return reconciliation.list_payments(repo, user_id, invoice_id)
  except LedgerError as e:
    raise _http_error(e)

@router.post("/payments", response_model=Payment)
def add_payment(
  data: PaymentCreate,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return reconciliation.add_payment(repo, user_id, data.invoice_id, data.amount, data.payment_date, data.notes)
  except LedgerError as e:
    raise _http_error(e)

@router.delete("/payments/{payment_id}")
def delete_payment(
  payment_id: str,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  try:
    return {"success": reconciliation.delete_payment(repo, user_id, payment_id)}
  except LedgerError as e:
    raise _http_error(e)


# reports

@router.get("/reports/dashboard", response_model=reports.DashboardStats)
def dashboard(
  month: Optional[int] = None,
  year: Optional[int] = None,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  today = date.today()
  try:
    return reports.dashboard_stats(
      repo.list_invoices(user_id),
      repo.list_expenses(user_id),
      month=month if month is not None else today.month,
      year=year if year is not None else today.year,
      customer_count=len(repo.list_customers(user_id)),
    )
  except LedgerError as e:
    raise _http_error(e)

@router.get("/reports/expenses", response_model=List[reports.ExpenseCategory])
def expense_report(
  period: reports.Period = reports.Period.MONTHLY,
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  return reports.expense_report(repo.list_expenses(user_id), period)

@router.get("/reports/aging", response_model=reports.AgingReport)
def aging_report(
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  return reports.aging_report(repo.list_invoices(user_id))

@router.get("/reports/top-customers", response_model=List[reports.CustomerTotal])
def top_customers(
  period: reports.Period = reports.Period.MONTHLY,
  limit: int = Query(5, ge=1, le=100),
  user_id: str = Depends(current_user),
  repo: SqlLedgerRepository = Depends(get_repository),
):
  return reports.top_customers(repo.list_invoices(user_id), repo.list_customers(user_id), period, limit=limit)
