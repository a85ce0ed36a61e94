import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ai_services import (
    CategorizationService,
    CompletionClient,
    OpenAICompletionClient,
    ReceiptExtractionError,
    ReceiptExtractionService,
)
from auth import AuthUser, current_user
from config import Settings, get_settings
from csv_utils import export_expenses, parse_amount
from database import Database
from models import CATEGORIES, Expense
from periods import local_today, month_period
from schemas import BudgetIn, ExpenseIn, ExpenseUpdate
from services import (
    BudgetService,
    ExpenseFilters,
    ExpenseNotFound,
    ExpenseService,
    StatsService,
    UserNotFound,
    cents_to_amount,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Request keys for the internal field names used in validation messages.
_FIELD_NAMES = {
    "amount_cents": "amount",
    "monthly_budget_cents": "monthlyBudget",
}


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def get_db(request: Request):
    db = request.app.state.database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_categorizer(request: Request) -> CategorizationService:
    settings: Settings = request.app.state.settings
    return CategorizationService(
        request.app.state.completion_client, model=settings.categorize_model
    )


def get_receipt_extractor(request: Request) -> ReceiptExtractionService:
    settings: Settings = request.app.state.settings
    return ReceiptExtractionService(
        request.app.state.completion_client, model=settings.receipt_model
    )


def today_for(request: Request) -> date:
    return local_today(request.app.state.settings.timezone)


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def filters_from_request(request: Request) -> ExpenseFilters:
    try:
        return ExpenseFilters(
            month=_int_param(request, "month"),
            year=_int_param(request, "year"),
            category=request.query_params.get("category") or None,
            search=request.query_params.get("search") or None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def month_from_request(request: Request) -> tuple[int, int]:
    today = today_for(request)
    year = _int_param(request, "year")
    month = _int_param(request, "month")
    if year is None:
        year = today.year
    if month is None:
        month = today.month
    try:
        month_period(year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return year, month


def _validation_detail(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = ".".join(_FIELD_NAMES.get(str(p), str(p)) for p in first["loc"])
            msg = first["msg"].removeprefix("Value error, ")
            return f"{loc}: {msg}" if loc else msg
    return str(exc)


def _db_failure(action: str) -> HTTPException:
    logger.exception(f"db_error: action={action}")
    return HTTPException(status_code=500, detail=f"Failed to {action}")


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return payload


def _parse_date(value) -> Optional[date]:
    if value in (None, ""):
        return None
    return date.fromisoformat(str(value)[:10])


def _amount_cents_from_payload(payload: dict) -> int:
    try:
        amount_cents = parse_amount(str(payload["amount"]))
    except ValueError as exc:
        raise ValueError("Amount must be a positive number") from exc
    if amount_cents <= 0:
        raise ValueError("Amount must be a positive number")
    return amount_cents


def expense_in_from_payload(payload: dict) -> ExpenseIn:
    if payload.get("amount") in (None, "") or not payload.get("description"):
        raise ValueError("Amount and description are required")
    return ExpenseIn(
        amount_cents=_amount_cents_from_payload(payload),
        description=payload["description"],
        date=_parse_date(payload.get("date")),
        category=payload.get("category") or None,
    )


def expense_update_from_payload(payload: dict) -> ExpenseUpdate:
    if payload.get("amount") in (None, "") or not payload.get("description"):
        raise ValueError("Amount and description are required")
    expense_date = _parse_date(payload.get("date"))
    if expense_date is None:
        raise ValueError("Date is required")
    data: dict[str, object] = {
        "amount_cents": _amount_cents_from_payload(payload),
        "description": payload["description"],
        "date": expense_date,
    }
    if payload.get("category") is not None:
        data["category"] = payload["category"]
    return ExpenseUpdate(**data)


def expense_to_dict(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": cents_to_amount(expense.amount_cents),
        "description": expense.description,
        "category": expense.category,
        "date": expense.date.isoformat(),
        "created_at": expense.created_at.isoformat(),
    }


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/categories")
def list_categories(user: AuthUser = Depends(current_user)):
    return list(CATEGORIES)


@router.get("/budget")
def get_budget(user: AuthUser = Depends(current_user), db: Session = Depends(get_db)):
    try:
        budget_cents = BudgetService(db, user.id).get_monthly_budget()
    except SQLAlchemyError as exc:
        raise _db_failure("fetch budget") from exc
    return {"monthlyBudget": cents_to_amount(budget_cents)}


@router.put("/budget")
async def update_budget(
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        raw = payload["monthlyBudget"]
        if raw is None or isinstance(raw, bool):
            raise ValueError("Invalid budget amount")
        data = BudgetIn(
            monthly_budget_cents=parse_amount(str(raw), allow_negative=True)
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid budget amount") from exc
    try:
        budget_cents = await run_in_threadpool(
            BudgetService(db, user.id).set_monthly_budget, data
        )
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise _db_failure("update budget") from exc
    logger.info(f"budget_updated: user_id={user.id} cents={budget_cents}")
    return {"monthlyBudget": cents_to_amount(budget_cents)}


@router.get("/budget/status")
def budget_status(
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    year, month = month_from_request(request)
    try:
        status = BudgetService(db, user.id).status(year, month)
    except SQLAlchemyError as exc:
        raise _db_failure("fetch budget status") from exc
    return {
        "month": month,
        "year": year,
        "monthlyBudget": cents_to_amount(status.budget_cents),
        "totalSpent": cents_to_amount(status.spent_cents),
        "percentUsed": round(status.percent_used, 2),
        "remaining": cents_to_amount(status.remaining_cents),
        "level": status.level,
    }


@router.get("/expenses")
def list_expenses(
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    try:
        expenses = ExpenseService(db, user.id).list(filters)
    except SQLAlchemyError as exc:
        raise _db_failure("fetch expenses") from exc
    return [expense_to_dict(expense) for expense in expenses]


@router.get("/expenses/stats")
def expense_stats(
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    year, month = month_from_request(request)
    try:
        stats = StatsService(db, user.id).month_stats(
            year, month, today=today_for(request)
        )
    except SQLAlchemyError as exc:
        raise _db_failure("fetch stats") from exc
    return {
        "month": stats.month,
        "year": stats.year,
        "totalSpent": cents_to_amount(stats.total_spent_cents),
        "expenseCount": stats.expense_count,
        "byCategory": [
            {
                "category": row["category"],
                "total": cents_to_amount(row["total_cents"]),
                "count": row["count"],
            }
            for row in stats.by_category
        ],
        "monthlyTrend": [
            {
                "month": row["month"],
                "month_num": row["month_num"],
                "year_num": row["year_num"],
                "total": cents_to_amount(row["total_cents"]),
            }
            for row in stats.monthly_trend
        ],
    }


@router.get("/expenses/export.csv")
def export_expenses_endpoint(
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    try:
        expenses = ExpenseService(db, user.id).list(filters)
    except SQLAlchemyError as exc:
        raise _db_failure("export expenses") from exc
    csv_text = export_expenses(expenses)
    period = filters.period
    filename = (
        f"expenses_{period.start.year:04d}_{period.start.month:02d}.csv"
        if period
        else "expenses.csv"
    )
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/expenses", status_code=201)
async def create_expense(
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
    categorizer: CategorizationService = Depends(get_categorizer),
):
    payload = await _json_body(request)
    try:
        data = expense_in_from_payload(payload)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    service = ExpenseService(db, user.id, categorizer)
    try:
        expense, _resolution = await run_in_threadpool(
            service.create, data, today=today_for(request)
        )
    except SQLAlchemyError as exc:
        raise _db_failure("create expense") from exc
    return expense_to_dict(expense)


@router.put("/expenses/{expense_id}")
async def update_expense(
    expense_id: int,
    request: Request,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    service = ExpenseService(db, user.id)
    try:
        await run_in_threadpool(service.get, expense_id)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        data = expense_update_from_payload(payload)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    try:
        expense = await run_in_threadpool(service.update, expense_id, data)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise _db_failure("update expense") from exc
    return expense_to_dict(expense)


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user: AuthUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user.id).delete(expense_id)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise _db_failure("delete expense") from exc
    return {"message": "Expense deleted successfully"}


@router.post("/receipt/extract")
async def extract_receipt(
    request: Request,
    user: AuthUser = Depends(current_user),
    extractor: ReceiptExtractionService = Depends(get_receipt_extractor),
):
    payload = await _json_body(request)
    image = payload.get("image")
    if not image or not isinstance(image, str):
        raise HTTPException(status_code=400, detail="Image is required")
    try:
        receipt = await run_in_threadpool(extractor.extract, image)
    except ReceiptExtractionError as exc:
        logger.exception(f"receipt_extract_failed: user_id={user.id}")
        raise HTTPException(
            status_code=500, detail="Failed to extract receipt data"
        ) from exc
    return {
        "amount": cents_to_amount(receipt.amount_cents),
        "merchant": receipt.merchant,
        "description": receipt.description,
    }


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    completion_client: Optional[CompletionClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    database = database or Database(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init_schema()
        try:
            yield
        finally:
            database.dispose()

    app = FastAPI(title="Expense Tracker", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.completion_client = completion_client or OpenAICompletionClient(
        settings.openai_api_key
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
