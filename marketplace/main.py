from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from marketplace.db import Base, engine
from marketplace.api.routes import router as api_router
from marketplace.errors import ConcurrencyConflictError, MarketplaceError
from marketplace.scheduler import start_scheduler, shutdown_scheduler
import marketplace.models  # noqa: F401 ensure models are imported so tables are known

# create FastAPI instance
app = FastAPI(title="Spirits Marketplace")
app.include_router(api_router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    detail = exc.detail
    if isinstance(exc, ConcurrencyConflictError):
        detail = "The listing changed while we were updating it, please try again"
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "detail": detail})


@app.on_event("startup")
def on_startup():
    # Ensure database tables are created on startup
    Base.metadata.create_all(bind=engine)
    start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()
