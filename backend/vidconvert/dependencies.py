"""FastAPI dependencies resolving the services built at startup."""
from fastapi import Request
from starlette.requests import HTTPConnection
from vidconvert.services.job_orchestrator import JobOrchestrator
from vidconvert.services.object_store import ObjectStore
from vidconvert.services.progress_broadcaster import ProgressBroadcaster
from vidconvert.services.video_catalog import VideoCatalog


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def get_catalog(request: Request) -> VideoCatalog:
    return request.app.state.catalog


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_broadcaster(connection: HTTPConnection) -> ProgressBroadcaster:
    # HTTPConnection so websocket routes can use it too
    return connection.app.state.broadcaster
