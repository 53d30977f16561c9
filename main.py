import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from db import create_db_and_tables
from errors import DomainError
from routers import auth, devices, needs, suggestions, transfers, users, vouchers
from settings import Config

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="EduBridge")


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    # Same shape as HTTPException plus a machine-readable code.
    logger.warning(
        "%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(devices.router, prefix="/devices")
app.include_router(needs.router, prefix="/needs")
app.include_router(suggestions.router, prefix="/suggestions")
app.include_router(transfers.router, prefix="/transfers")
app.include_router(vouchers.router, prefix="/vouchers")
