import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import dispose_engine, get_db, init_db
from schemas import (
    BudgetIn,
    CategoryOut,
    IncomeIn,
    SuccessOut,
    TransactionIn,
    TransactionOut,
    UserIn,
    UserOut,
    WeeklyExpenseOut,
)
from services import (
    AnalyticsService,
    CategoryService,
    ServiceError,
    TransactionService,
    UserService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    import tomllib

    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # init_db raises on failure, which aborts startup
    init_db()
    yield
    dispose_engine()


app = FastAPI(title="Budget Tracker", version=APP_VERSION, lifespan=lifespan)


# added before CORSMiddleware so that 500 responses still get CORS headers
@app.middleware("http")
async def unhandled_error_envelope(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Unhandled error for %s %s", request.method, request.url.path
        )
        return _error(500, str(exc))


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = str(err.get("msg", "Invalid value"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return _error(exc.status_code, str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, _validation_message(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/user", response_model=UserOut)
def get_or_create_user(payload: UserIn, db: Session = Depends(get_db)):
    return UserService(db).get_or_create(payload.username)


@app.put("/api/user/{user_id}/income", response_model=SuccessOut)
def update_income(user_id: int, payload: IncomeIn, db: Session = Depends(get_db)):
    UserService(db).set_income(user_id, payload.income)
    return SuccessOut()


@app.get("/api/user/{user_id}/categories", response_model=list[CategoryOut])
def list_categories(user_id: int, db: Session = Depends(get_db)):
    return CategoryService(db).list_for_user(user_id)


@app.put("/api/category/{category_id}", response_model=SuccessOut)
def update_category_budget(
    category_id: int, payload: BudgetIn, db: Session = Depends(get_db)
):
    CategoryService(db).update_budget(category_id, payload.budget)
    return SuccessOut()


@app.get("/api/user/{user_id}/transactions", response_model=list[TransactionOut])
def list_transactions(user_id: int, db: Session = Depends(get_db)):
    return TransactionService(db).list_for_user(user_id)


@app.post("/api/user/{user_id}/transactions", response_model=TransactionOut)
def add_transaction(
    user_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    return TransactionService(db).create(user_id, payload)


@app.put("/api/transaction/{transaction_id}", response_model=SuccessOut)
def update_transaction(
    transaction_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    TransactionService(db).update(transaction_id, payload)
    return SuccessOut()


@app.delete("/api/transaction/{transaction_id}", response_model=SuccessOut)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)
    return SuccessOut()


@app.get("/api/user/{user_id}/weekly-expenses", response_model=list[WeeklyExpenseOut])
def weekly_expenses(user_id: int, db: Session = Depends(get_db)):
    return AnalyticsService(db).weekly_expenses(user_id)


@app.delete("/api/user/{user_id}/reset", response_model=SuccessOut)
def reset_user(user_id: int, db: Session = Depends(get_db)):
    TransactionService(db).reset_user(user_id)
    return SuccessOut()


# registered last so the API routes above take precedence
if settings.static_dir.is_dir():
    app.mount(
        "/", StaticFiles(directory=settings.static_dir, html=True), name="static"
    )


def main():
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
