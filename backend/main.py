from fastapi import FastAPI
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from core.auth import fastapi_users, auth_backend
from core.errors import register_exception_handlers
from core.logging_config import configure_logging
from db.database import create_db_and_tables
from routers.counts import router as counts_router
from routers.stock import router as stock_router
from routers.transfers import router as transfers_router
from schemas.users import UserRead, UserCreate, UserUpdate


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_db_and_tables()
    yield


app = FastAPI(
    title="Stock Ledger API",
    description="Inventory movements, transfers and count reconciliation for multi-store restaurants",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"],)
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_reset_password_router(), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_verify_router(UserRead), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Stock ledger routes
app.include_router(stock_router, prefix="/stock", tags=["stock"])
app.include_router(transfers_router, prefix="/transfers", tags=["transfers"])
app.include_router(counts_router, prefix="/counts", tags=["counts"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
