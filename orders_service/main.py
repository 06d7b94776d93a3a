from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from orders_service.config import get_settings
from orders_service.database import Base, engine
from orders_service.deps import get_store
from orders_service.errors import OrderServiceError
from orders_service.logging_config import configure_logging
from orders_service.routes import router
from orders_service.store import OrderStore
from orders_service.webhooks import SIGNATURE_HEADER, handle_webhook

settings = get_settings()
configure_logging(settings.log_level, json=settings.log_json)

app = FastAPI(title="Storefront Orders Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(OrderServiceError)
async def order_service_error_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body", "message": problems},
    )


@app.post("/razorpay/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(None, alias=SIGNATURE_HEADER),
    store: OrderStore = Depends(get_store),
):
    # Signature covers the exact bytes received, so read the body unparsed.
    payload = await request.body()
    return await run_in_threadpool(
        handle_webhook,
        store,
        payload,
        x_razorpay_signature,
        get_settings().razorpay_webhook_secret,
    )
