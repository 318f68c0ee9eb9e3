import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backoffice.api.routes import inventory, orders, reports, users
from backoffice.core.config import ENABLE_SCHEDULER, LOG_LEVEL
from backoffice.core.database import SessionLocal
from backoffice.jobs.scheduler import build_scheduler
from backoffice.services.events import OrderEventBus
from backoffice.services.milestones import MilestoneMonitor
from backoffice.services.notifications import LoggingNotificationSender

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

notifier = LoggingNotificationSender()
order_events = OrderEventBus()
milestone_monitor = MilestoneMonitor(SessionLocal, notifier)
milestone_monitor.subscribe_to(order_events)
scheduler = build_scheduler(SessionLocal, notifier)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if ENABLE_SCHEDULER:
        scheduler.start()
    yield
    if scheduler.running:
        await scheduler.stop()
    milestone_monitor.shutdown(wait=False)


app = FastAPI(
    title="Restaurant Back-Office API",
    description="Inventory, orders and waiter commission reporting for restaurant staff",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.notifier = notifier
app.state.order_events = order_events

# Include routers
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(inventory.router, prefix="/api/v1/items", tags=["items"])
app.include_router(reports.router, prefix="/api/v1/reports", tags=["reports"])
app.include_router(users.router, prefix="/api/v1/users", tags=["users"])


@app.get("/")
async def root():
    return {"message": "Restaurant Back-Office API"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
