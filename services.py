from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional, TypeVar
from zoneinfo import ZoneInfo

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import INVALID_CREDENTIALS, AuthError, hash_password, verify_password
from calculations import (
    BudgetStatusRow,
    annual_report,
    budget_status,
    budget_tips,
    crossed_threshold,
    income_stats,
    month_bounds,
    month_key,
    reminder_window,
    rupees_to_cents,
    spending_insights,
)
from config import get_settings
from csv_utils import export_transactions, parse_csv
from gst import gst_rate_for
from models import (
    BudgetLimit,
    BudgetState,
    ExpenseCategory,
    Income,
    IncomeSource,
    Notification,
    NotificationType,
    PaymentMode,
    RecurringFrequency,
    RelatedTo,
    SavingsGoal,
    Transaction,
    User,
)
from schemas import (
    BudgetLimitIn,
    BudgetLimitUpdateIn,
    ContributionIn,
    IncomeIn,
    IncomeUpdateIn,
    LoginIn,
    SavingsGoalIn,
    SavingsGoalUpdateIn,
    SignupIn,
    SyncItemIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class ValidationFailed(ValueError):
    status_code = 400


class Conflict(ValueError):
    status_code = 400


class Forbidden(ValueError):
    status_code = 403


class NotFound(ValueError):
    status_code = 404


def local_now() -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None, microsecond=0)


def local_today() -> date:
    return local_now().date()


def _positive_cents(amount, message: str = "A positive amount is required") -> int:
    cents = rupees_to_cents(amount)
    if cents <= 0:
        raise ValidationFailed(message)
    return cents


def _naive_local(value: Optional[datetime]) -> datetime:
    if value is None:
        return local_now()
    if value.tzinfo is not None:
        tz = ZoneInfo(get_settings().timezone)
        return value.astimezone(tz).replace(tzinfo=None)
    return value


class _UserScoped:
    """Base for services whose records all belong to one user."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned(
        self, model: type[ModelT], record_id: int, label: str, action: str
    ) -> ModelT:
        record = self.session.get(model, record_id)
        if record is None:
            raise NotFound(f"{label[0].upper()}{label[1:]} not found")
        if record.user_id != self.user_id:
            raise Forbidden(f"You are not authorized to {action} this {label}")
        return record


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def signup(self, data: SignupIn) -> User:
        email = data.email.lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise Conflict("Email already in use")
        user = User(email=email, password_hash=hash_password(data.password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Email already in use") from exc
        self.session.refresh(user)
        logger.info(f"user_signup: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        user = self.session.scalar(select(User).where(User.email == data.email.lower()))
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthError(INVALID_CREDENTIALS)
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user


class NotificationService(_UserScoped):
    def list_all(self, limit: int = 20, unread_only: bool = False) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        return list(self.session.scalars(stmt).all())

    def unread_count(self) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == self.user_id, Notification.is_read.is_(False)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def create(
        self,
        type: NotificationType,
        title: str,
        message: str,
        *,
        related_to: RelatedTo = RelatedTo.system,
        related_id: Optional[int] = None,
        is_priority: bool = False,
    ) -> Notification:
        """Stage a notification in the caller's unit of work (no commit)."""
        notification = Notification(
            user_id=self.user_id,
            type=type,
            title=title,
            message=message,
            related_to=related_to,
            related_id=related_id,
            is_priority=is_priority,
        )
        self.session.add(notification)
        return notification

    def mark_read(self, notification_id: int) -> Notification:
        notification = self._owned(
            Notification, notification_id, "notification", "update"
        )
        notification.is_read = True
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def mark_all_read(self) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return int(result.rowcount or 0)

    def delete(self, notification_id: int) -> None:
        notification = self._owned(
            Notification, notification_id, "notification", "delete"
        )
        self.session.delete(notification)
        self.session.commit()


class TransactionService(_UserScoped):
    def list_all(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        category: Optional[ExpenseCategory] = None,
        newest_first: bool = True,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date < end)
        if category is not None:
            stmt = stmt.where(Transaction.category == category)
        if newest_first:
            stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(Transaction.date.asc(), Transaction.id.asc())
        return list(self.session.scalars(stmt).all())

    def for_month(self, year: int, month: int) -> list[Transaction]:
        start, end = month_bounds(year, month)
        return self.list_all(start=start, end=end, newest_first=False)

    def get(self, transaction_id: int) -> Transaction:
        return self._owned(Transaction, transaction_id, "transaction", "access")

    def _spent_in_month(
        self, category: ExpenseCategory, year: int, month: int
    ) -> int:
        start, end = month_bounds(year, month)
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.category == category,
            Transaction.date >= start,
            Transaction.date < end,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _stage(self, data: TransactionIn) -> Transaction:
        upi_id = data.upi_id if data.payment_mode == PaymentMode.upi else None
        txn_date = _naive_local(data.date)
        amount_cents = _positive_cents(data.amount)

        limit = self.session.scalar(
            select(BudgetLimit).where(
                BudgetLimit.user_id == self.user_id,
                BudgetLimit.category == data.category,
            )
        )
        spent_before = (
            self._spent_in_month(data.category, txn_date.year, txn_date.month)
            if limit
            else 0
        )

        txn = Transaction(
            user_id=self.user_id,
            date=txn_date,
            amount_cents=amount_cents,
            category=data.category,
            payment_mode=data.payment_mode,
            upi_id=upi_id or None,
            gst_rate=gst_rate_for(data.category),
            description=data.description or None,
        )
        self.session.add(txn)
        self.session.flush()

        if limit:
            reached = crossed_threshold(
                limit.amount_cents, spent_before, spent_before + amount_cents
            )
            if reached is not None:
                self._budget_alert(limit, reached, txn_date)
        return txn

    def _budget_alert(
        self, limit: BudgetLimit, reached: BudgetState, when: datetime
    ) -> None:
        category = limit.category.value
        if reached == BudgetState.exceeded:
            title = f"{category} Budget Exceeded"
            message = (
                f"You have exceeded your {category} budget for {month_key(when)}."
            )
        else:
            title = f"{category} Budget Warning"
            message = (
                f"You have used over 80% of your {category} budget "
                f"for {month_key(when)}."
            )
        NotificationService(self.session, self.user_id).create(
            NotificationType.budget_alert,
            title,
            message,
            related_to=RelatedTo.budget,
            related_id=limit.id,
            is_priority=reached == BudgetState.exceeded,
        )
        logger.info(
            f"budget_alert: user_id={self.user_id} category={category} state={reached.value}"
        )

    def create(self, data: TransactionIn) -> Transaction:
        txn = self._stage(data)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self._owned(Transaction, transaction_id, "transaction", "delete")
        self.session.delete(txn)
        self.session.commit()

    def sync(self, items: list[dict]) -> list[dict[str, object]]:
        """Replay queued offline transactions in order, one commit per item.

        A failed item is reported back so the client keeps it queued; nothing
        is deduplicated, so a replayed item that already succeeded is created
        again.
        """
        results: list[dict[str, object]] = []
        for index, raw in enumerate(items):
            client_id = raw.get("clientId") if isinstance(raw, dict) else None
            try:
                data = SyncItemIn.model_validate(raw)
                txn = self.create(data)
            except ValidationError as exc:
                self.session.rollback()
                first = exc.errors()[0] if exc.errors() else {}
                field = ".".join(str(p) for p in first.get("loc", ()))
                results.append(
                    {
                        "index": index,
                        "clientId": client_id,
                        "status": "failed",
                        "message": f"{field}: {first.get('msg', 'invalid')}",
                    }
                )
                continue
            except ValueError as exc:
                self.session.rollback()
                results.append(
                    {
                        "index": index,
                        "clientId": client_id,
                        "status": "failed",
                        "message": str(exc),
                    }
                )
                continue
            results.append(
                {"index": index, "clientId": client_id, "status": "synced", "id": txn.id}
            )
        synced = sum(1 for r in results if r["status"] == "synced")
        logger.info(
            f"offline_sync: user_id={self.user_id} received={len(items)} synced={synced}"
        )
        return results


class CSVService(_UserScoped):
    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_csv(content)
        preview_rows = [
            {
                "date": row.date.isoformat(),
                "amount": float(row.amount),
                "category": row.category.value,
                "paymentMode": row.payment_mode.value,
                "upiId": row.upi_id,
                "description": row.description,
                "gstRate": gst_rate_for(row.category),
            }
            for row in rows
        ]
        return preview_rows, errors

    def commit(self, content: str) -> int:
        rows, errors = parse_csv(content)
        if errors:
            raise ValidationFailed("; ".join(errors))
        if not rows:
            raise ValidationFailed("No transactions to import")
        service = TransactionService(self.session, self.user_id)
        for row in rows:
            service._stage(
                TransactionIn(
                    amount=row.amount,
                    category=row.category,
                    payment_mode=row.payment_mode,
                    upi_id=row.upi_id,
                    description=row.description,
                    date=row.date,
                )
            )
        self.session.commit()
        logger.info(f"csv_import: user_id={self.user_id} rows={len(rows)}")
        return len(rows)

    def export(self) -> str:
        txns = TransactionService(self.session, self.user_id).list_all(
            newest_first=False
        )
        return export_transactions(txns)


class BudgetService(_UserScoped):
    def list_all(self) -> list[BudgetLimit]:
        stmt = (
            select(BudgetLimit)
            .where(BudgetLimit.user_id == self.user_id)
            .order_by(BudgetLimit.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: BudgetLimitIn) -> BudgetLimit:
        amount_cents = _positive_cents(data.amount)
        existing = self.session.scalar(
            select(BudgetLimit).where(
                BudgetLimit.user_id == self.user_id,
                BudgetLimit.category == data.category,
            )
        )
        if existing:
            raise Conflict(f"A budget for {data.category.value} already exists.")
        limit = BudgetLimit(
            user_id=self.user_id,
            category=data.category,
            amount_cents=amount_cents,
        )
        self.session.add(limit)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(f"A budget for {data.category.value} already exists.") from exc
        self.session.refresh(limit)
        return limit

    def update_amount(self, limit_id: int, data: BudgetLimitUpdateIn) -> BudgetLimit:
        limit = self._owned(BudgetLimit, limit_id, "budget", "update")
        amount_cents = _positive_cents(data.amount)
        limit.amount_cents = amount_cents
        self.session.commit()
        self.session.refresh(limit)
        return limit

    def delete(self, limit_id: int) -> None:
        limit = self._owned(BudgetLimit, limit_id, "budget", "delete")
        self.session.delete(limit)
        self.session.commit()

    def status(self, year: int, month: int) -> list[BudgetStatusRow]:
        limits = self.list_all()
        if not limits:
            return []
        txns = TransactionService(self.session, self.user_id).for_month(year, month)
        return budget_status(limits, txns)

    def tips(self, today: Optional[date] = None) -> list[dict[str, object]]:
        today = today or local_today()
        return budget_tips(self.status(today.year, today.month))


class IncomeService(_UserScoped):
    def list_all(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        source: Optional[IncomeSource] = None,
    ) -> list[Income]:
        stmt = select(Income).where(Income.user_id == self.user_id)
        if start is not None:
            stmt = stmt.where(Income.date >= start)
        if end is not None:
            stmt = stmt.where(Income.date < end)
        if source is not None:
            stmt = stmt.where(Income.source == source)
        stmt = stmt.order_by(Income.date.desc(), Income.id.desc())
        return list(self.session.scalars(stmt).all())

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            amount_cents=_positive_cents(data.amount),
            source=data.source,
            description=data.description or "",
            date=_naive_local(data.date),
            is_recurring=data.is_recurring,
            recurring_frequency=(data.recurring_frequency or RecurringFrequency.monthly)
            if data.is_recurring
            else RecurringFrequency.monthly,
            taxable=data.taxable,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def update(self, income_id: int, data: IncomeUpdateIn) -> Income:
        income = self._owned(Income, income_id, "income entry", "update")
        amount_cents = (
            _positive_cents(data.amount) if data.amount is not None else None
        )
        if amount_cents is not None:
            income.amount_cents = amount_cents
        if data.source is not None:
            income.source = data.source
        if data.description is not None:
            income.description = data.description
        if data.date is not None:
            income.date = _naive_local(data.date)
        if data.is_recurring is not None:
            income.is_recurring = data.is_recurring
        if data.recurring_frequency is not None:
            income.recurring_frequency = data.recurring_frequency
        if data.taxable is not None:
            income.taxable = data.taxable
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        income = self._owned(Income, income_id, "income entry", "delete")
        self.session.delete(income)
        self.session.commit()

    def stats(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        return income_stats(self.list_all(), today)


class SavingsGoalService(_UserScoped):
    def list_all(self) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .where(SavingsGoal.user_id == self.user_id)
            .order_by(SavingsGoal.created_at.desc(), SavingsGoal.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, goal_id: int) -> SavingsGoal:
        return self._owned(SavingsGoal, goal_id, "savings goal", "access")

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            user_id=self.user_id,
            name=data.name,
            target_amount_cents=_positive_cents(data.target_amount),
            current_amount_cents=0,
            target_date=data.target_date,
            description=data.description or "",
            category=data.category,
            is_completed=False,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def _notify_completed(self, goal: SavingsGoal) -> None:
        NotificationService(self.session, self.user_id).create(
            NotificationType.goal_completed,
            "Saving Goal Achieved!",
            f"Congratulations! You've reached your saving goal for \"{goal.name}\".",
            related_to=RelatedTo.goal,
            related_id=goal.id,
            is_priority=True,
        )
        logger.info(f"goal_completed: user_id={self.user_id} goal_id={goal.id}")

    def _complete_if_reached(self, goal_id: int) -> bool:
        """Flip ``is_completed`` in one conditional UPDATE; True only for the flipper."""
        result = self.session.execute(
            update(SavingsGoal)
            .where(
                SavingsGoal.id == goal_id,
                SavingsGoal.user_id == self.user_id,
                SavingsGoal.is_completed.is_(False),
                SavingsGoal.current_amount_cents >= SavingsGoal.target_amount_cents,
            )
            .values(is_completed=True, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def update(self, goal_id: int, data: SavingsGoalUpdateIn) -> SavingsGoal:
        goal = self._owned(SavingsGoal, goal_id, "savings goal", "update")
        target_cents = (
            _positive_cents(data.target_amount)
            if data.target_amount is not None
            else None
        )
        if data.name is not None:
            goal.name = data.name
        if data.description is not None:
            goal.description = data.description
        if data.category is not None:
            goal.category = data.category
        if target_cents is not None:
            goal.target_amount_cents = target_cents
        if data.target_date is not None:
            goal.target_date = data.target_date
        self.session.flush()
        if self._complete_if_reached(goal.id):
            self._notify_completed(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self._owned(SavingsGoal, goal_id, "savings goal", "delete")
        self.session.delete(goal)
        self.session.commit()

    def add_contribution(self, goal_id: int, data: ContributionIn) -> SavingsGoal:
        """Add to the running total; repeated calls keep adding.

        The increment is a single SQL expression, so concurrent contributions
        cannot overwrite each other, and only the request whose update flips
        ``is_completed`` emits the completion notification.
        """
        amount_cents = _positive_cents(data.amount, "Please provide a valid positive amount")
        goal = self._owned(SavingsGoal, goal_id, "savings goal", "contribute to")
        self.session.execute(
            update(SavingsGoal)
            .where(SavingsGoal.id == goal.id, SavingsGoal.user_id == self.user_id)
            .values(
                current_amount_cents=SavingsGoal.current_amount_cents + amount_cents,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if self._complete_if_reached(goal.id):
            self._notify_completed(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal


class InsightsService(_UserScoped):
    def spending(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        txns = TransactionService(self.session, self.user_id).list_all(
            newest_first=False
        )
        return spending_insights(txns, today)


class ReportService(_UserScoped):
    def annual(self, year: int) -> dict[str, object]:
        if not 1970 <= year <= 3000:
            raise ValidationFailed("Year is out of range")
        txns = TransactionService(self.session, self.user_id).list_all(
            start=datetime(year, 1, 1), end=datetime(year + 1, 1, 1), newest_first=False
        )
        return annual_report(txns, [txn.gst_rate for txn in txns], year)


def create_goal_reminders(session: Session, today: date, days: int = 7) -> int:
    """Remind owners of incomplete goals due within ``days``; at most once per window."""
    window_start, window_end = reminder_window(today, days)
    goals = session.scalars(
        select(SavingsGoal).where(
            SavingsGoal.is_completed.is_(False),
            SavingsGoal.target_date >= window_start,
            SavingsGoal.target_date <= window_end,
        )
    ).all()
    cutoff = datetime.combine(today, datetime.min.time()) - timedelta(days=days)
    created = 0
    for goal in goals:
        recent = session.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == goal.user_id,
                Notification.type == NotificationType.goal_reminder,
                Notification.related_id == goal.id,
                Notification.created_at >= cutoff,
            )
        )
        if recent:
            continue
        remaining = max(0, goal.target_amount_cents - goal.current_amount_cents)
        days_left = (goal.target_date - today).days
        NotificationService(session, goal.user_id).create(
            NotificationType.goal_reminder,
            "Savings Goal Due Soon",
            f"\"{goal.name}\" is due in {days_left} day(s); "
            f"₹{remaining / 100:,.2f} still to go.",
            related_to=RelatedTo.goal,
            related_id=goal.id,
        )
        created += 1
    session.commit()
    return created

