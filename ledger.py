"""
ledger.py
Monthly water allowance: allocation, rollover from the previous cycle and
consumption in the current one.

compute_balance and balance_snapshot are pure; account_balance and
save_liters do the store reads (once per call) and hand plain data over.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from cycles import as_utc, current_cycle, cycle_key, had_prior_cycle, in_cycle, next_cycle, previous_cycle, utcnow
from schemas import Account, BalanceSnapshot, DeliveryRecord, Plan, RolloverOverride

logger = logging.getLogger(__name__)

# One delivery container holds 19.5 liters
CONTAINER_LITERS = 19.5


def container_to_liters(containers: int) -> float:
    return (containers or 0) * CONTAINER_LITERS


def consumed_liters(deliveries: Iterable[DeliveryRecord], cycle: tuple[datetime, datetime]) -> float:
    # Counted when scheduled: every record dated in the cycle, whatever its status
    return sum(container_to_liters(d.volume_containers) for d in deliveries if in_cycle(d.date, cycle))


def plan_allocation(plan: Plan) -> float:
    return plan.liters_per_month + plan.bonus_liters


def rollover_liters(plan: Plan, deliveries: Iterable[DeliveryRecord], now: datetime,
                    had_prior_cycle: bool, rollover_override: Optional[float] = None) -> float:
    """
    Unused liters carried in from the previous cycle. A saved-liters
    override replaces the computed value when present.
    """
    if rollover_override is not None:
        return max(0.0, float(rollover_override))
    if not had_prior_cycle:
        return 0.0
    consumed_last = consumed_liters(deliveries, previous_cycle(now))
    return max(0.0, plan_allocation(plan) - consumed_last)


def compute_balance(plan: Optional[Plan], deliveries: Iterable[DeliveryRecord], now: datetime,
                    had_prior_cycle: bool, rollover_override: Optional[float] = None,
                    saved_liters: float = 0.0) -> float:
    """
    Liters left in the current cycle: allocation + rollover - consumed.

    `saved_liters` is what the customer already moved into next cycle.
    The result may be negative (over-consumption) and is not rounded.
    """
    if plan is None or plan.consumption_based:
        return 0.0
    snapshot = list(deliveries or [])
    allocation = plan_allocation(plan)
    rollover = rollover_liters(plan, snapshot, now, had_prior_cycle, rollover_override)
    consumed = consumed_liters(snapshot, current_cycle(now))
    return allocation + rollover - consumed - saved_liters


def balance_snapshot(account: Account, deliveries: Iterable[DeliveryRecord], now: datetime,
                     rollover_override: Optional[float] = None, saved_liters: float = 0.0) -> BalanceSnapshot:
    now = as_utc(now)
    snapshot = list(deliveries or [])
    plan = account.plan
    out = BalanceSnapshot(account_id=account.id, cycle=cycle_key(now))
    if plan is None:
        return out

    consumed = consumed_liters(snapshot, current_cycle(now))
    if plan.consumption_based:
        return out.model_copy(update={
            "consumed_liters_this_cycle": consumed,
            "estimated_cost": consumed * plan.price_per_liter,
        })

    prior = had_prior_cycle(account, now)
    rollover = rollover_liters(plan, snapshot, now, prior, rollover_override)
    allocation = plan_allocation(plan)
    total = allocation + rollover
    consumed_pct = (consumed / total) * 100 if total > 0 else 0.0
    return out.model_copy(update={
        "monthly_plan_liters": plan.liters_per_month,
        "bonus_liters": plan.bonus_liters,
        "allocation": allocation,
        "rollover_liters": rollover,
        "total_liters_for_month": total,
        "consumed_liters_this_cycle": consumed,
        "saved_liters": saved_liters,
        "current_balance": compute_balance(plan, snapshot, now, prior, rollover_override, saved_liters),
        "consumed_percentage": consumed_pct,
        "remaining_percentage": 100 - consumed_pct,
        # Fixed plans bill the flat monthly price
        "estimated_cost": plan.monthly_price,
    })


def account_balance(store, account_id: str, now: Optional[datetime] = None) -> BalanceSnapshot:
    now = as_utc(now or utcnow())
    account = store.get_account(account_id)
    start, _ = previous_cycle(now)
    _, end = current_cycle(now)
    deliveries = store.list_deliveries(account_id, start, end)

    carried_in = store.get_rollover_override(account_id, cycle_key(now))
    saved_out = store.get_rollover_override(account_id, cycle_key(next_cycle(now)[0]))
    return balance_snapshot(
        account,
        deliveries,
        now,
        rollover_override=carried_in.amount if carried_in else None,
        saved_liters=saved_out.amount if saved_out else 0.0,
    )


def save_liters(store, account_id: str, now: Optional[datetime] = None) -> float:
    """
    Move the current positive balance into next cycle's rollover.

    Returns the liters carried over. Repeating the call within the same
    cycle returns the stored amount and changes nothing.
    """
    now = as_utc(now or utcnow())
    target = cycle_key(next_cycle(now)[0])

    existing = store.get_rollover_override(account_id, target)
    if existing is not None:
        return existing.amount

    snapshot = account_balance(store, account_id, now)
    if snapshot.current_balance <= 0:
        logger.info("Account %s has no liters to save for %s", account_id, target)
        return 0.0

    stored = store.put_rollover_override(RolloverOverride(
        account_id=account_id,
        cycle=target,
        source_cycle=snapshot.cycle,
        amount=snapshot.current_balance,
        created_at=now,
    ))
    logger.info("Account %s saved %.1f L into %s", account_id, stored.amount, target)
    return stored.amount
