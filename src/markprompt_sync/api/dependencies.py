"""FastAPI dependencies resolving the services held on the application state."""

import secrets

import httpx
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from markprompt_sync.api.service import RetrievalService, TrainingService
from markprompt_sync.config import Settings
from markprompt_sync.storage import Store
from markprompt_sync.sync.queue import SyncQueue
from markprompt_sync.sync.runner import SyncRunner

bearer = HTTPBearer(auto_error=False)


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return service


def get_settings_dep(request: Request) -> Settings:
    return _state(request, "settings")


def get_store(request: Request) -> Store:
    return _state(request, "store")


def get_sync_queue(request: Request) -> SyncQueue:
    return _state(request, "sync_queue")


def get_sync_runner(request: Request) -> SyncRunner:
    return _state(request, "sync_runner")


def get_retrieval_service(request: Request) -> RetrievalService:
    return _state(request, "retrieval_service")


def get_training_service(request: Request) -> TrainingService:
    return _state(request, "training_service")


def require_api_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    """Guard for routes called by the connector sync service."""
    expected = settings.api_token
    if (
        not expected
        or credentials is None
        or not secrets.compare_digest(credentials.credentials, expected)
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_http_client(request: Request) -> httpx.AsyncClient:
    return _state(request, "http_client")
