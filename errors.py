# errors.py


class LedgerError(Exception):
  """Base class for errors raised by the ledger services."""

  status_code = 400

  def __init__(self, message: str):
    super().__init__(message)
    self.message = message


class ValidationError(LedgerError):
  """Malformed or out-of-range input: bad amounts, overpayments, missing references."""

  status_code = 400


class NotFoundError(LedgerError):
  status_code = 404


class ConflictError(LedgerError):
  """A concurrent write or a referential constraint blocked the operation."""

  status_code = 409
