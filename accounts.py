"""
accounts.py
Account creation and the two ways a plan changes: an admin plan edit and
the customer's delivery-schedule update.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from cycles import as_utc, utcnow
from errors import ValidationError
from schemas import DELIVERY_TIME_PATTERN, WEEKDAYS, Account, Plan

logger = logging.getLogger(__name__)


def open_account(store, name: str, business_name: str = "", plan: Optional[Plan] = None,
                 created_at: Optional[datetime] = None) -> Account:
    if not name or not name.strip():
        raise ValidationError("Name is required")
    account = Account(
        name=name.strip(),
        business_name=business_name.strip(),
        created_at=as_utc(created_at or utcnow()),
        plan=plan,
    )
    new_id = store.create_account(account)
    logger.info("Opened account %s (%s)", new_id, account.business_name or account.name)
    return account.model_copy(update={"id": new_id})


def change_plan(store, account_id: str, plan: Optional[Plan]) -> Account:
    account = store.update_plan(account_id, plan)
    logger.info("Plan changed for account %s", account_id)
    return account


def update_schedule(store, account_id: str, delivery_day: str, delivery_time: str) -> Account:
    if delivery_day not in WEEKDAYS:
        raise ValidationError(f"Unknown delivery day: {delivery_day}")
    if not re.match(DELIVERY_TIME_PATTERN, delivery_time or ""):
        raise ValidationError("Delivery time must be HH:MM")

    account = store.get_account(account_id)
    if account.plan is None:
        raise ValidationError("Account has no plan to schedule")
    plan = account.plan.model_copy(update={"delivery_day": delivery_day, "delivery_time": delivery_time})
    return store.update_plan(account_id, plan)
