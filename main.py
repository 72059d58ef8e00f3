import logging
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from advisor import AdvisorUnavailable, GeminiClient, build_prompt, load_snapshot
from auth import AuthError, current_user_id, issue_token
from calculations import cents_to_rupees, goal_projection, month_key, parse_month_key
from config import get_settings
from database import get_db, init_db
from gst import split_cents
from models import (
    BudgetLimit,
    ExpenseCategory,
    Income,
    IncomeSource,
    Notification,
    SavingsGoal,
    Transaction,
    User,
)
from scheduler import SchedulerManager
from schemas import (
    AdvisorIn,
    BudgetLimitIn,
    BudgetLimitUpdateIn,
    ContributionIn,
    IncomeIn,
    IncomeUpdateIn,
    LoginIn,
    SavingsGoalIn,
    SavingsGoalUpdateIn,
    SignupIn,
    SyncBatchIn,
    TransactionIn,
    UpiVerifyIn,
)
from services import (
    BudgetService,
    CSVService,
    IncomeService,
    InsightsService,
    NotificationService,
    ReportService,
    SavingsGoalService,
    TransactionService,
    UserService,
    local_now,
    local_today,
)
from upi import verify_upi_id

settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

MAX_IMPORT_BYTES = 5 * 1024 * 1024

app = FastAPI(title="Personal Finance API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _fail(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    body: dict[str, object] = {"status": "fail", "message": message}
    if code:
        body["code"] = code
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "error", "message": str(exc.detail)},
        )
    return _fail(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return _fail(400, "Invalid request", code="validation_error")
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    field = ".".join(loc)
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return _fail(400, message, code="validation_error")


@app.exception_handler(AuthError)
async def auth_exception_handler(request: Request, exc: AuthError):
    return _fail(401, exc.message, code=exc.code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(
        status_code=500, content={"status": "error", "message": "Something went wrong"}
    )


def _http_error(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=getattr(exc, "status_code", 400), detail=str(exc))


def _ok(data: object = None, **extra: object) -> dict[str, object]:
    body: dict[str, object] = {"status": "success"}
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _day_range(
    start: Optional[date], end: Optional[date]
) -> tuple[Optional[datetime], Optional[datetime]]:
    start_dt = datetime.combine(start, datetime.min.time()) if start else None
    end_dt = datetime.combine(end + timedelta(days=1), datetime.min.time()) if end else None
    return start_dt, end_dt


def user_out(user: User) -> dict[str, object]:
    return {"id": user.id, "email": user.email, "createdAt": _iso(user.created_at)}


def transaction_out(txn: Transaction) -> dict[str, object]:
    gst = split_cents(txn.amount_cents, txn.gst_rate)
    return {
        "id": txn.id,
        "date": _iso(txn.date),
        "amount": cents_to_rupees(txn.amount_cents),
        "category": txn.category.value,
        "paymentMode": txn.payment_mode.value,
        "upiId": txn.upi_id,
        "description": txn.description,
        "gstRate": txn.gst_rate,
        "baseAmount": float(gst.base),
        "gstAmount": float(gst.tax),
        "createdAt": _iso(txn.created_at),
    }


def budget_out(limit: BudgetLimit) -> dict[str, object]:
    return {
        "id": limit.id,
        "category": limit.category.value,
        "amount": cents_to_rupees(limit.amount_cents),
        "createdAt": _iso(limit.created_at),
        "updatedAt": _iso(limit.updated_at),
    }


def income_out(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "amount": cents_to_rupees(income.amount_cents),
        "source": income.source.value,
        "description": income.description,
        "date": _iso(income.date),
        "isRecurring": income.is_recurring,
        "recurringFrequency": income.recurring_frequency.value
        if income.is_recurring
        else None,
        "taxable": income.taxable,
        "createdAt": _iso(income.created_at),
    }


def goal_out(goal: SavingsGoal, today: date) -> dict[str, object]:
    projection = goal_projection(
        goal.target_amount_cents,
        goal.current_amount_cents,
        goal.target_date,
        goal.is_completed,
        today,
    )
    return {
        "id": goal.id,
        "name": goal.name,
        "targetAmount": cents_to_rupees(goal.target_amount_cents),
        "currentAmount": cents_to_rupees(goal.current_amount_cents),
        "targetDate": goal.target_date.isoformat(),
        "description": goal.description,
        "category": goal.category.value,
        "isCompleted": goal.is_completed,
        "createdAt": _iso(goal.created_at),
        "updatedAt": _iso(goal.updated_at),
        **projection.as_dict(),
    }


def notification_out(notification: Notification) -> dict[str, object]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "relatedTo": notification.related_to.value,
        "relatedId": notification.related_id,
        "isRead": notification.is_read,
        "isPriority": notification.is_priority,
        "createdAt": _iso(notification.created_at),
    }


# --- auth -------------------------------------------------------------------


@app.post("/api/auth/signup", status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).signup(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok({"user": user_out(user)}, token=issue_token(user.id))


@app.post("/api/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(payload)
    return _ok({"user": user_out(user)}, token=issue_token(user.id))


@app.get("/api/auth/me")
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    try:
        user = UserService(db).get(user_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok({"user": user_out(user)})


# --- transactions -----------------------------------------------------------


@app.get("/api/transactions")
def list_transactions(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    category: Optional[ExpenseCategory] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    start, end = _day_range(start_date, end_date)
    txns = TransactionService(db, user_id).list_all(
        start=start, end=end, category=category
    )
    return _ok([transaction_out(t) for t in txns], results=len(txns))


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(transaction_out(txn))


@app.post("/api/transactions/sync")
def sync_transactions(
    payload: SyncBatchIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    results = TransactionService(db, user_id).sync(payload.transactions)
    synced = sum(1 for r in results if r["status"] == "synced")
    return _ok(
        {"results": results, "synced": synced, "failed": len(results) - synced}
    )


@app.get("/api/transactions/export.csv")
def export_transactions_endpoint(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    csv_text = CSVService(db, user_id).export()
    filename = f"transactions_{local_today().isoformat()}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _read_csv_upload(file: UploadFile) -> str:
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a .csv file")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_IMPORT_BYTES:
        raise HTTPException(status_code=400, detail="CSV file too large (max 5MB)")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded") from exc


@app.post("/api/transactions/import/preview")
async def import_preview(
    file: UploadFile = File(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    text = await _read_csv_upload(file)
    rows, errors = CSVService(db, user_id).preview(text)
    return _ok({"rows": rows, "errors": errors})


@app.post("/api/transactions/import/commit", status_code=201)
async def import_commit(
    file: UploadFile = File(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    text = await _read_csv_upload(file)
    try:
        imported = CSVService(db, user_id).commit(text)
    except ValueError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    return _ok({"imported": imported})


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(transaction_out(txn))


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(message="Transaction deleted")


# --- budget -----------------------------------------------------------------


@app.get("/api/budget")
def list_budgets(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    limits = BudgetService(db, user_id).list_all()
    return _ok([budget_out(b) for b in limits])


@app.post("/api/budget", status_code=201)
def create_budget(
    payload: BudgetLimitIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        limit = BudgetService(db, user_id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(budget_out(limit))


@app.get("/api/budget/status")
def budget_status_endpoint(
    month: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        if month:
            year, month_num = parse_month_key(month)
        else:
            today = local_today()
            year, month_num = today.year, today.month
    except ValueError as exc:
        raise _http_error(exc) from exc
    rows = BudgetService(db, user_id).status(year, month_num)
    return _ok(
        {
            "month": month_key(date(year, month_num, 1)),
            "budgetStatus": [row.as_dict() for row in rows],
        }
    )


@app.get("/api/budget/tips")
def budget_tips_endpoint(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return _ok(BudgetService(db, user_id).tips(local_today()))


@app.put("/api/budget/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetLimitUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        limit = BudgetService(db, user_id).update_amount(budget_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(budget_out(limit))


@app.delete("/api/budget/{budget_id}")
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(message="Budget deleted")


# --- income -----------------------------------------------------------------


@app.get("/api/income")
def list_income(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    source: Optional[IncomeSource] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    start, end = _day_range(start_date, end_date)
    incomes = IncomeService(db, user_id).list_all(start=start, end=end, source=source)
    return _ok([income_out(i) for i in incomes], results=len(incomes))


@app.post("/api/income", status_code=201)
def create_income(
    payload: IncomeIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    income = IncomeService(db, user_id).create(payload)
    return _ok(income_out(income))


@app.get("/api/income/stats")
def income_stats_endpoint(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return _ok(IncomeService(db, user_id).stats(local_today()))


@app.put("/api/income/{income_id}")
def update_income(
    income_id: int,
    payload: IncomeUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        income = IncomeService(db, user_id).update(income_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(income_out(income))


@app.delete("/api/income/{income_id}")
def delete_income(
    income_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        IncomeService(db, user_id).delete(income_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(message="Income deleted")


# --- savings goals ----------------------------------------------------------


@app.get("/api/savings-goals")
def list_goals(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    today = local_today()
    goals = SavingsGoalService(db, user_id).list_all()
    return _ok([goal_out(g, today) for g in goals], results=len(goals))


@app.post("/api/savings-goals", status_code=201)
def create_goal(
    payload: SavingsGoalIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    goal = SavingsGoalService(db, user_id).create(payload)
    return _ok(goal_out(goal, local_today()))


@app.get("/api/savings-goals/{goal_id}")
def get_goal(
    goal_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = SavingsGoalService(db, user_id).get(goal_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(goal_out(goal, local_today()))


@app.put("/api/savings-goals/{goal_id}")
def update_goal(
    goal_id: int,
    payload: SavingsGoalUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = SavingsGoalService(db, user_id).update(goal_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(goal_out(goal, local_today()))


@app.delete("/api/savings-goals/{goal_id}")
def delete_goal(
    goal_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        SavingsGoalService(db, user_id).delete(goal_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(message="Savings goal deleted")


@app.post("/api/savings-goals/{goal_id}/contribute")
def contribute_to_goal(
    goal_id: int,
    payload: ContributionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = SavingsGoalService(db, user_id).add_contribution(goal_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(goal_out(goal, local_today()))


# --- notifications ----------------------------------------------------------


@app.get("/api/notifications")
def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = NotificationService(db, user_id)
    items = service.list_all(limit=limit, unread_only=unread_only)
    return _ok(
        {
            "notifications": [notification_out(n) for n in items],
            "unreadCount": service.unread_count(),
        }
    )


@app.put("/api/notifications/read-all")
def mark_all_notifications_read(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    updated = NotificationService(db, user_id).mark_all_read()
    return _ok({"updated": updated})


@app.put("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        notification = NotificationService(db, user_id).mark_read(notification_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(notification_out(notification))


@app.delete("/api/notifications/{notification_id}")
def delete_notification(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        NotificationService(db, user_id).delete(notification_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(message="Notification deleted")


# --- insights, reports, utilities -------------------------------------------


@app.get("/api/insights/spending")
def spending_insights_endpoint(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return _ok(InsightsService(db, user_id).spending(local_today()))


@app.get("/api/reports/annual")
def annual_report_endpoint(
    year: Optional[int] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        report = ReportService(db, user_id).annual(year or local_today().year)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _ok(report)


@app.post("/api/upi/verify")
def verify_upi(payload: UpiVerifyIn, user_id: int = Depends(current_user_id)):
    return _ok(verify_upi_id(payload.upi_id).as_dict())


@app.post("/api/advisor")
def advisor(
    payload: Optional[AdvisorIn] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    prompt = build_prompt(
        load_snapshot(db, user_id), payload.question if payload else None
    )
    try:
        advice = GeminiClient().generate(prompt)
    except AdvisorUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _ok({"advice": advice, "generatedAt": local_now().isoformat()})


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
