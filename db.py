# db.py
import logging
import os

from dotenv import load_dotenv
from sqlmodel import SQLModel, create_engine, Session

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ledger.db").strip()
SQL_ECHO = os.getenv("SQL_ECHO", "0").strip() in ("1", "true", "yes")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=SQL_ECHO, pool_pre_ping=True, connect_args=connect_args)

def init_db() -> None:
  import models  # noqa: F401  registers the tables on SQLModel.metadata
  SQLModel.metadata.create_all(engine)
  logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))

def get_session():
  with Session(engine) as session:
    yield session
