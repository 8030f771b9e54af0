import logging

from fastapi import FastAPI, Request, Header, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from aecoin_store import config, reconciliation
from aecoin_store.routes import router
from aecoin_store.database import Base, engine, SessionLocal
from aecoin_store.errors import (
    EmptyCart,
    InvalidOrderTotal,
    PendingPaymentNotFound,
    ProviderQueryError,
    SignatureInvalid,
    StoreError,
    VerificationFailed,
)
from aecoin_store.reconciliation import ReturnOutcome

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AECOIN Store")

app.include_router(router)

Base.metadata.create_all(bind=engine)

SUCCESS_PAGE = "/orders?payment=success&provider=toyyibpay"
PENDING_PAGE = "/payment/pending"
FAILED_PAGE = "/payment/failed"


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    # Messages stay generic: callers must not learn which check failed
    if isinstance(exc, PendingPaymentNotFound):
        return JSONResponse(status_code=404, content={"detail": "Payment not found"})
    if isinstance(exc, (EmptyCart, InvalidOrderTotal)):
        return JSONResponse(status_code=400, content={"detail": str(exc)})
    if isinstance(exc, (SignatureInvalid, VerificationFailed)):
        return JSONResponse(status_code=400, content={"detail": "Payment verification failed"})
    if isinstance(exc, ProviderQueryError):
        logger.error("Payment provider error: %s", exc)
        return JSONResponse(status_code=502, content={"detail": "Payment provider unavailable"})
    logger.exception("Unhandled store error", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


def _process_stripe_webhook(payload: bytes, signature):
    db = SessionLocal()
    try:
        order = reconciliation.handle_stripe_webhook(db, payload, signature)
        return order.id if order else None
    finally:
        db.close()


@app.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    payload = await request.body()

    try:
        order_id = await run_in_threadpool(_process_stripe_webhook, payload, stripe_signature)
    except SignatureInvalid as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(status_code=400, detail="Webhook verification failed")
    except (VerificationFailed, PendingPaymentNotFound):
        raise HTTPException(status_code=400, detail="Webhook verification failed")

    return {"received": True, "orderId": order_id}


def _process_toyyibpay(params) -> ReturnOutcome:
    db = SessionLocal()
    try:
        return reconciliation.handle_toyyibpay_return(db, params)
    finally:
        db.close()


@app.api_route("/api/toyyibpay/callback", methods=["GET", "POST"])
async def toyyibpay_callback(request: Request):
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})

    logger.info("ToyyibPay callback received billcode=%s", params.get("billcode"))
    try:
        outcome = await run_in_threadpool(_process_toyyibpay, params)
    except (VerificationFailed, PendingPaymentNotFound):
        return PlainTextResponse("FAILED", status_code=400)

    # Unconfirmed payments are left untouched; ToyyibPay only needs an acknowledgement
    logger.info("ToyyibPay callback for %s -> %s", params.get("billcode"), outcome.value)
    return PlainTextResponse("OK")


@app.get("/api/toyyibpay/return")
async def toyyibpay_return(request: Request):
    params = dict(request.query_params)
    try:
        outcome = await run_in_threadpool(_process_toyyibpay, params)
    except StoreError as e:
        logger.warning("ToyyibPay return for %s not completed: %s", params.get("billcode"), type(e).__name__)
        outcome = ReturnOutcome.FAILED

    if outcome == ReturnOutcome.SUCCESS:
        return RedirectResponse(url=SUCCESS_PAGE, status_code=303)
    if outcome == ReturnOutcome.PENDING:
        return RedirectResponse(url=PENDING_PAGE, status_code=303)
    return RedirectResponse(url=FAILED_PAGE, status_code=303)
