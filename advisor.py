from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from urllib.error import URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from sqlalchemy import select
from sqlalchemy.orm import Session

from calculations import cents_to_rupees, spent_by_category
from config import get_settings
from models import BudgetLimit, Income, SavingsGoal, Transaction

logger = logging.getLogger(__name__)

GEMINI_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)


class AdvisorUnavailable(RuntimeError):
    pass


@dataclass
class FinancialSnapshot:
    category_totals: dict[str, float] = field(default_factory=dict)
    budget_limits: dict[str, float] = field(default_factory=dict)
    goals: list[dict[str, object]] = field(default_factory=list)
    total_income: float = 0.0
    total_expenses: float = 0.0

    @property
    def savings_rate(self) -> float:
        if self.total_income <= 0:
            return 0.0
        return (self.total_income - self.total_expenses) * 100 / self.total_income


def load_snapshot(session: Session, user_id: int) -> FinancialSnapshot:
    txns = session.scalars(
        select(Transaction).where(Transaction.user_id == user_id)
    ).all()
    limits = session.scalars(
        select(BudgetLimit).where(BudgetLimit.user_id == user_id)
    ).all()
    goals = session.scalars(
        select(SavingsGoal).where(SavingsGoal.user_id == user_id)
    ).all()
    incomes = session.scalars(select(Income).where(Income.user_id == user_id)).all()

    totals = spent_by_category(txns)
    return FinancialSnapshot(
        category_totals={
            category.value: cents_to_rupees(cents)
            for category, cents in sorted(totals.items(), key=lambda kv: kv[0].value)
        },
        budget_limits={
            limit.category.value: cents_to_rupees(limit.amount_cents)
            for limit in sorted(limits, key=lambda lim: lim.category.value)
        },
        goals=[
            {
                "name": goal.name,
                "target": cents_to_rupees(goal.target_amount_cents),
                "current": cents_to_rupees(goal.current_amount_cents),
                "targetDate": goal.target_date.isoformat(),
            }
            for goal in goals
        ],
        total_income=cents_to_rupees(sum(inc.amount_cents for inc in incomes)),
        total_expenses=cents_to_rupees(sum(totals.values())),
    )


def build_prompt(snapshot: FinancialSnapshot, question: str | None = None) -> str:
    lines = [
        "You are a personal finance advisor for a user in India.",
        "Give 3 to 5 short, practical suggestions. Amounts are in INR.",
        "",
        f"Total income: ₹{snapshot.total_income:,.2f}",
        f"Total expenses: ₹{snapshot.total_expenses:,.2f}",
        f"Savings rate: {snapshot.savings_rate:.1f}%",
        "",
        "Spending by category:",
    ]
    if snapshot.category_totals:
        lines.extend(
            f"- {name}: ₹{amount:,.2f}" for name, amount in snapshot.category_totals.items()
        )
    else:
        lines.append("- none recorded")
    lines.append("")
    lines.append("Monthly budget limits:")
    if snapshot.budget_limits:
        lines.extend(
            f"- {name}: ₹{amount:,.2f}" for name, amount in snapshot.budget_limits.items()
        )
    else:
        lines.append("- none set")
    lines.append("")
    lines.append("Savings goals:")
    if snapshot.goals:
        for goal in snapshot.goals:
            lines.append(
                f"- {goal['name']}: ₹{goal['current']:,.2f} of ₹{goal['target']:,.2f}"
                f" by {goal['targetDate']}"
            )
    else:
        lines.append("- none")
    if question:
        lines.append("")
        lines.append(f"The user asks: {question}")
    return "\n".join(lines)


class GeminiClient:
    def __init__(self) -> None:
        self.settings = get_settings()

    def generate(self, prompt: str) -> str:
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise AdvisorUnavailable("AI advisor is not configured")

        url = GEMINI_URL.format(model=quote(self.settings.gemini_model, safe=""))
        body = json.dumps({"contents": [{"parts": [{"text": prompt}]}]}).encode("utf-8")
        req = Request(
            url,
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "x-goog-api-key": api_key,
            },
        )
        try:
            with urlopen(req, timeout=self.settings.ai_timeout_secs) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.warning(f"advisor_request_failed: error={exc}")
            raise AdvisorUnavailable("AI advisor is temporarily unavailable") from exc

        try:
            parts = payload["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts).strip()
        except (KeyError, IndexError, TypeError) as exc:
            raise AdvisorUnavailable("Unexpected response from AI advisor") from exc
        if not text:
            raise AdvisorUnavailable("Unexpected response from AI advisor")
        return text
