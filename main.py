import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billing_route import router as billing_router
from db import init_db

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
CORS_ORIGINS = [
  x.strip()
  for x in os.getenv("CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
  if x.strip()
]

logging.basicConfig(
  level=getattr(logging, LOG_LEVEL, logging.INFO),
  format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
  init_db()
  logger.info("Ledger API started")
  yield


app = FastAPI(title="Ledger Backend", version="1.0.0", lifespan=lifespan)
app.add_middleware(
  CORSMiddleware,
  allow_origins=CORS_ORIGINS,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.include_router(billing_router)


@app.get("/health")
def health():
  return {"ok": True}
