import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import api_router
from .config import Settings
from .errors import ValidationError, WorkflowEngineError

logging.basicConfig(
    level=Settings.log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan: startup and shutdown events.
    """
    logger.info("Starting workflow engine (store=%s, ordering=%s)",
                Settings.store_backend(), Settings.ordering_policy())

    yield

    logger.info("Shutting down workflow engine")

app = FastAPI(
    title="Workflow Engine",
    description="Builds, stores and executes AI workflows: an input node feeding a chain of prompt-driven model calls, with every run and step recorded.",
    lifespan=lifespan
)

# Use regex to allow all Vercel domains and localhost
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],  # Empty list - use regex instead
    allow_origin_regex=Settings.cors_origin_regex(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)


@app.exception_handler(WorkflowEngineError)
async def workflow_engine_error_handler(request: Request, exc: WorkflowEngineError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request"
    error = ValidationError(message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.include_router(api_router)
