import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from idea_refiner.config import get_settings
from idea_refiner.routers.health import router as health_router
from idea_refiner.routers.refine import reset_dispatcher
from idea_refiner.routers.refine import router as refine_router
from idea_refiner.utils.exceptions import (
    RefinerError,
    generic_exception_handler,
    http_exception_handler,
    refiner_exception_handler,
    validation_exception_handler,
)
from idea_refiner.utils.logger import get_logger
from idea_refiner.utils.metrics import request_count, request_latency
from idea_refiner.utils.rate_limit import client_identity, get_rate_limiter, too_many_requests

load_dotenv()

settings = get_settings()
logger = get_logger(level=settings.log_level)

RATE_LIMITED_PREFIX = "/api/"


@asynccontextmanager
async def lifespan(app: FastAPI):
    s = get_settings()
    logger.info(
        {
            "event": "startup",
            "env": s.app_env,
            "provider": s.llm_provider,
            "model": s.llm_model,
            "rate_limit_max": s.rate_limit_max,
            "rate_limit_window_ms": s.rate_limit_window_ms,
        }
    )
    yield
    reset_dispatcher()
    logger.info({"event": "shutdown"})


app = FastAPI(title="Idea Refiner", version="0.1.0", lifespan=lifespan)

app.add_exception_handler(RefinerError, refiner_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_and_log(request: Request, call_next: Callable):
    start = time.perf_counter()
    header = get_settings().request_id_header
    req_id = request.headers.get(header) or str(uuid.uuid4())
    # Attach to request state for downstream
    request.state.request_id = req_id

    response: Response = Response(status_code=500)
    endpoint = request.url.path
    try:
        decision = None
        if endpoint.startswith(RATE_LIMITED_PREFIX) and request.method != "OPTIONS":
            decision = get_rate_limiter().hit(client_identity(request))
        if decision is not None and not decision.allowed:
            response = too_many_requests(request, decision)
        else:
            response = await call_next(request)
            if decision is not None:
                response.headers["RateLimit-Limit"] = str(decision.limit)
                response.headers["RateLimit-Remaining"] = str(decision.remaining)
    except Exception as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.error(
            {
                "event": "request_error",
                "method": request.method,
                "path": endpoint,
                "error": str(e),
                "request_id": req_id,
                "latency_ms": duration_ms,
            }
        )
        if endpoint != "/metrics":
            request_count.labels(endpoint=endpoint, status="500").inc()
            request_latency.labels(endpoint=endpoint).observe(duration_ms / 1000.0)
        raise
    else:
        duration_ms = int((time.perf_counter() - start) * 1000)
        if endpoint != "/metrics":
            request_count.labels(endpoint=endpoint, status=str(response.status_code)).inc()
            request_latency.labels(endpoint=endpoint).observe(duration_ms / 1000.0)
    finally:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            {
                "event": "request",
                "method": request.method,
                "path": endpoint,
                "status_code": getattr(response, "status_code", -1),
                "request_id": req_id,
                "latency_ms": duration_ms,
            }
        )
        response.headers[header] = req_id
    return response


app.include_router(health_router)
app.include_router(refine_router)


def serve() -> None:
    import uvicorn

    uvicorn.run("idea_refiner.main:app", host="0.0.0.0", port=get_settings().port)
