"""API service for webhook-triggered workflows."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from services.api.routes.workflow import router as workflow_router
from services.api.middleware import CorrelationIdMiddleware
from shared.logging_config import setup_logging

setup_logging("api")

app = FastAPI(title="Webhook Workflow Engine", version="1.0.0")
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(workflow_router, tags=["Workflows"])


@app.get("/")
async def root():
    return {"service": "api", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
