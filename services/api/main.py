"""Flow execution API service."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from services.api.routes.flow import get_executor, router as flow_router
from services.api.middleware import CorrelationIdMiddleware
from shared.logging_config import setup_logging

setup_logging("flow-api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Build the executor up front so the plugin catalog is frozen before traffic
    executor = get_executor()
    logging.info("Plugin catalog loaded", extra={"plugin_types": executor.registry.list_types()})
    yield


app = FastAPI(title="Flow Execution API", version="1.0.0", lifespan=lifespan)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(flow_router, tags=["Flows"])


@app.get("/")
async def root():
    return {"service": "flow-api", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
