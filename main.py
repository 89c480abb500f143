import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth
import config
from database import db, ensure_indexes
from errors import LibraryError
from models import utcnow
from routers import users, books, borrow
from services.inventory import InventoryStore
from services.ledger import BorrowLedger
from services.lending import LendingService
from utils.dependencies import get_notifier

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("library")


async def sweep_periodically(interval_minutes: int):
    service = LendingService(InventoryStore(db), BorrowLedger(db), get_notifier())
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await service.sweep_overdue()
        except Exception:
            logger.exception("Scheduled overdue sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_indexes()
    sweeper = None
    if config.OVERDUE_SWEEP_INTERVAL_MINUTES > 0:
        sweeper = asyncio.create_task(sweep_periodically(config.OVERDUE_SWEEP_INTERVAL_MINUTES))
        logger.info("Overdue sweep scheduled every %d minute(s)", config.OVERDUE_SWEEP_INTERVAL_MINUTES)
    yield
    if sweeper:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(title="Library Management System with Auth", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(books.router)
app.include_router(borrow.router)

@app.get("/health")
def health():
    return {"success": True, "message": "Server is running", "timestamp": utcnow().isoformat()}
