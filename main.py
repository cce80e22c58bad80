import logging
import os
import threading
from datetime import datetime, date
from typing import Optional
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import accounts
import ledger
from database import MongoStore, StoreConfig
from deliveries import DeliveryService
from errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    NotificationError,
    StoreUnavailableError,
    ValidationError,
)
from refills import RefillStateMachine
from schemas import Account, BalanceSnapshot, DeliveryRecord, DeliveryStatus, Notification, Plan, RefillRequest, RolloverOverride
from ledger import CONTAINER_LITERS, container_to_liters

logger = logging.getLogger(__name__)

app = FastAPI(title="Water Allowance Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Created on first use, once per process
_store: Optional[MongoStore] = None
_store_lock = threading.Lock()


def get_store() -> MongoStore:
    global _store
    if _store is None:
        # Sync endpoints run in a threadpool; build the client only once
        with _store_lock:
            if _store is None:
                _store = MongoStore.from_config(StoreConfig.from_env())
    return _store


def get_refills(store: MongoStore = Depends(get_store)) -> RefillStateMachine:
    return RefillStateMachine(store)


def get_deliveries(store: MongoStore = Depends(get_store)) -> DeliveryService:
    return DeliveryService(store)


# Error kinds -> HTTP status
_ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    ConcurrentModificationError: 409,
    StoreUnavailableError: 503,
}


@app.exception_handler(LedgerError)
def ledger_error_handler(request, exc: LedgerError):
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "kind": type(exc).__name__})


def _refill_response(refill: RefillRequest, notified: bool = True) -> dict:
    return {**refill.model_dump(mode="json"), "notified": notified}


# Public health
@app.get("/")
def root():
    return {"status": "ok", "service": "water-ledger", "liters_per_container": CONTAINER_LITERS}


# Owner endpoints
class CreateAccount(BaseModel):
    name: str
    business_name: str = ""
    plan: Optional[Plan] = None
    created_at: Optional[datetime] = None


@app.post("/api/owner/accounts")
def create_account(req: CreateAccount, store: MongoStore = Depends(get_store)):
    account = accounts.open_account(store, req.name, req.business_name, req.plan, req.created_at)
    return {"account_id": account.id}


@app.put("/api/owner/accounts/{account_id}/plan", response_model=Account)
def change_plan(account_id: str, plan: Plan, store: MongoStore = Depends(get_store)):
    return accounts.change_plan(store, account_id, plan)


class CreateDelivery(BaseModel):
    date: datetime
    volume_containers: int
    status: DeliveryStatus = "Pending"
    proof_url: Optional[str] = None
    admin_notes: Optional[str] = None


@app.post("/api/owner/accounts/{account_id}/deliveries")
def create_delivery(account_id: str, body: CreateDelivery, deliveries: DeliveryService = Depends(get_deliveries)):
    notified = True
    try:
        record = deliveries.schedule(account_id, body.date, body.volume_containers, body.status,
                                     body.proof_url, body.admin_notes)
    except NotificationError as e:
        record, notified = e.request, False
    return {"delivery_id": record.id, "liters": container_to_liters(record.volume_containers), "notified": notified}


class DeliveryStatusUpdate(BaseModel):
    status: str
    proof_url: Optional[str] = None


@app.post("/api/owner/deliveries/{delivery_id}/status")
def update_delivery_status(delivery_id: str, body: DeliveryStatusUpdate,
                           deliveries: DeliveryService = Depends(get_deliveries)):
    notified = True
    try:
        record = deliveries.update_status(delivery_id, body.status, body.proof_url)
    except NotificationError as e:
        record, notified = e.request, False
    return {**record.model_dump(mode="json"), "notified": notified}


class StatusUpdate(BaseModel):
    status: str


@app.post("/api/owner/refills/{request_id}/status")
def update_refill_status(request_id: str, body: StatusUpdate, refills: RefillStateMachine = Depends(get_refills)):
    try:
        refill = refills.advance_by_id(request_id, body.status)
    except NotificationError as e:
        return _refill_response(e.request, notified=False)
    return _refill_response(refill)


# Customer endpoints
@app.get("/api/customer/{account_id}/deliveries")
def list_deliveries(account_id: str, start: datetime, end: datetime, store: MongoStore = Depends(get_store)):
    rows = store.list_deliveries(account_id, start, end)
    return [{**r.model_dump(mode="json"), "liters": container_to_liters(r.volume_containers)} for r in rows]


class ScheduleUpdate(BaseModel):
    delivery_day: str
    delivery_time: str


@app.put("/api/customer/{account_id}/schedule", response_model=Account)
def update_schedule(account_id: str, body: ScheduleUpdate, store: MongoStore = Depends(get_store)):
    return accounts.update_schedule(store, account_id, body.delivery_day, body.delivery_time)


@app.get("/api/customer/{account_id}/balance", response_model=BalanceSnapshot)
def get_balance(account_id: str, store: MongoStore = Depends(get_store)):
    return ledger.account_balance(store, account_id)


@app.post("/api/customer/{account_id}/save-liters")
def save_liters(account_id: str, store: MongoStore = Depends(get_store)):
    saved = ledger.save_liters(store, account_id)
    return {"account_id": account_id, "saved_liters": saved}


class RefillCreate(BaseModel):
    requested_date: date
    containers: int


@app.post("/api/customer/{account_id}/refills")
def request_refill(account_id: str, body: RefillCreate, refills: RefillStateMachine = Depends(get_refills)):
    try:
        refill = refills.create(account_id, body.requested_date, body.containers)
    except NotificationError as e:
        return _refill_response(e.request, notified=False)
    return _refill_response(refill)


@app.get("/api/customer/{account_id}/refills/active")
def active_refill(account_id: str, refills: RefillStateMachine = Depends(get_refills)):
    refill = refills.active_request(account_id)
    return {"active": refill.model_dump(mode="json") if refill else None}


@app.post("/api/customer/refills/{request_id}/cancel")
def cancel_refill(request_id: str, refills: RefillStateMachine = Depends(get_refills)):
    try:
        refill = refills.cancel_by_id(request_id)
    except NotificationError as e:
        return _refill_response(e.request, notified=False)
    return _refill_response(refill)


@app.get("/api/customer/{account_id}/notifications")
def list_notifications(account_id: str, limit: int = 50, store: MongoStore = Depends(get_store)):
    return [n.model_dump(mode="json") for n in store.list_notifications(account_id, limit=limit)]


# Schema discovery for database viewer
@app.get("/schema")
def get_schema_examples():
    return {
        "account": Account.model_json_schema(),
        "delivery": DeliveryRecord.model_json_schema(),
        "refillrequest": RefillRequest.model_json_schema(),
        "notification": Notification.model_json_schema(),
        "rolloveroverride": RolloverOverride.model_json_schema(),
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
