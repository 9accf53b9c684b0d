"""Payment service API + consumer lifecycle.

Serves the payment read endpoint and runs the OrderCreated consumer on the
process-wide broker connection.
"""

import asyncio
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from payflow.common.config import settings
from payflow.common.db import SessionLocal, engine, init_models
from payflow.common.envelope import dump_json
from payflow.common.errors import StoreUnavailable
from payflow.common.events import EventPublisher, connect
from payflow.common.logging import configure_logging, logger
from payflow.common.metrics import metrics_response
from payflow.common.startup import log_startup_config
from payflow.common.tracing import instrument_app, setup_tracing
from payflow.services.payment.schemas import PaymentResponse
from payflow.services.payment.service import PaymentService
from payflow.services.payment.store import PaymentStore

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "STORE_CONNECTION_STRING", "BUS_URL", "BUS_EXCHANGE", "BUS_QUEUE"],
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Connect the bus and run the OrderCreated consumer with app lifecycle."""

    if settings.store_create_schema:
        await init_models()
    connection = await connect()
    service = PaymentService(SessionLocal, EventPublisher(connection, settings.bus_exchange))
    consumer_task = asyncio.create_task(service.start_consumers(connection))
    yield
    consumer_task.cancel()
    try:
        await consumer_task
    except asyncio.CancelledError:
        pass
    await connection.close()
    await engine.dispose()


app = FastAPI(title="Payment Service", lifespan=lifespan)
instrument_app(app)


async def get_store():
    """One session per request, wrapped in the payment store."""

    async with SessionLocal() as session:
        yield PaymentStore(session)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(_: Request, exc: StoreUnavailable):
    logger.error("store unavailable on read path error=%s", exc)
    return JSONResponse(status_code=500, content={"detail": "store unavailable"})


@app.get("/api/payments/by-order/{order_id}", response_model=PaymentResponse)
async def get_payment_by_order(order_id: str, store: PaymentStore = Depends(get_store)):
    """Fetch the payment created for one order; ids that are not UUIDs match nothing."""

    try:
        order_uuid = UUID(order_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="payment not found")
    payment = await store.find_by_order(order_uuid)
    if payment is None:
        raise HTTPException(status_code=404, detail="payment not found")
    body = PaymentResponse.model_validate(payment).model_dump(by_alias=True)
    return Response(content=dump_json(body), media_type="application/json")


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"status": "ok"}
