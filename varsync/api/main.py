"""
HTTP surface for the synchronization runtime.

The endpoints play the host's part: they deliver configuration changes,
invoke instance lifecycle handlers and accept inbound messages. Messages sent
during a request are dispatched as a background task once it completes.
"""

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, HTTPException, Request

from util.logging import REDACTED, logger, sanitize_payload
from .schemas import (
    ClassResult,
    EventListResponse,
    HealthResponse,
    InstanceConfigRequest,
    InstanceCreateRequest,
    InstanceResponse,
    LifecycleResponse,
    MessageResponse,
    ProjectConfigRequest,
    ProjectSyncResponse,
)
from ..core.config import VERSION, debug_enabled
from ..core.db import health_check
from ..core.errors import InvalidKeyError, StoreError
from ..core.kv import SQLiteKVBackend
from ..core.lifecycle import BaseInstance
from ..core.project import ProjectSyncResult
from ..core.runtime import SyncRuntime
from ..core.schema import KEY_SEPARATOR, DeclarationClass, InstanceKind, LifecycleResult, StoreKey

router = APIRouter()


def get_runtime(request: Request) -> SyncRuntime:
    """Runtime bound to the app; built from environment config on first use."""
    if request.app.state.runtime is None:
        request.app.state.runtime = SyncRuntime.from_config()
    return request.app.state.runtime


def _get_instance(runtime: SyncRuntime, instance_id: str) -> BaseInstance:
    instance = runtime.registry.get(instance_id)
    if instance is None:
        raise HTTPException(status_code=404, detail=f"Instance not found: {instance_id}")
    return instance


def _redact_event(instance: BaseInstance, payload):
    if payload is None or not instance.sensitive:
        return payload
    return sanitize_payload(payload)


def _key_owner(runtime: SyncRuntime, instance: BaseInstance):
    name = getattr(instance, "name", None)
    if name is None:
        return None
    try:
        owner = runtime.store.owner_of(StoreKey(instance.declaration_class, name))
    except StoreError as e:
        logger.error(f"Error reading owner of {name}: {e}")
        return None
    return owner.token if owner is not None else None


def _instance_response(runtime: SyncRuntime, instance: BaseInstance) -> InstanceResponse:
    signal = instance.signal
    if signal is not None and instance.sensitive:
        signal = REDACTED
    return InstanceResponse(
        instance_id=instance.instance_id,
        kind=instance.kind,
        var_type=instance.declaration_class,
        name=getattr(instance, "name", None),
        status=instance.status,
        description=instance.description,
        signal=signal,
        owner=_key_owner(runtime, instance),
    )


def _lifecycle_response(instance: BaseInstance, result: LifecycleResult) -> LifecycleResponse:
    event = result.event.to_payload() if result.event is not None else None
    return LifecycleResponse(
        instance_id=instance.instance_id,
        status=result.status,
        description=result.description,
        event=_redact_event(instance, event),
    )


def _sync_response(outcome: ProjectSyncResult) -> ProjectSyncResponse:
    def class_result(declaration_class):
        result = outcome.results[declaration_class]
        return ClassResult(
            changed_keys=sorted(result.changed_keys),
            failed_keys=sorted(result.failed_keys),
        )

    return ProjectSyncResponse(
        status=outcome.status,
        description=outcome.description,
        variables=class_result(DeclarationClass.PLAIN),
        secrets=class_result(DeclarationClass.SENSITIVE),
    )


@router.get("/health", response_model=HealthResponse)
def health_check_endpoint(runtime: SyncRuntime = Depends(get_runtime)):
    """Check system health."""
    backend = runtime.store.backend
    db_health = health_check(backend.db_path) if isinstance(backend, SQLiteKVBackend) else True

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        kv_count=backend.count(),
        keys_by_class={
            declaration_class.value: len(backend.list_keys(declaration_class.value + KEY_SEPARATOR))
            for declaration_class in DeclarationClass
        },
        instance_count=len(runtime.registry.list_instances()),
    )


@router.put("/project/config", response_model=ProjectSyncResponse)
def put_project_config(req: ProjectConfigRequest, background_tasks: BackgroundTasks,
                       runtime: SyncRuntime = Depends(get_runtime)):
    """Apply a new project-level declaration of variables and secrets."""
    outcome = runtime.project.on_config_change(req.variables, req.secrets)
    background_tasks.add_task(runtime.dispatch)
    return _sync_response(outcome)


@router.post("/project/retrigger", response_model=ProjectSyncResponse)
def retrigger_project(background_tasks: BackgroundTasks, runtime: SyncRuntime = Depends(get_runtime)):
    """Re-apply the last declared snapshots."""
    outcome = runtime.project.retrigger()
    background_tasks.add_task(runtime.dispatch)
    return _sync_response(outcome)


@router.post("/project/messages", response_model=MessageResponse)
def post_project_message(background_tasks: BackgroundTasks, body: Any = Body(None),
                         runtime: SyncRuntime = Depends(get_runtime)):
    """Inbound drain request or sync notice. Malformed bodies are dropped, not rejected."""
    accepted = runtime.project.on_message(body)
    background_tasks.add_task(runtime.dispatch)
    return MessageResponse(accepted=accepted)


@router.post("/instances", response_model=InstanceResponse, status_code=201)
def create_instance(req: InstanceCreateRequest, runtime: SyncRuntime = Depends(get_runtime)):
    """Register a flow, declaring or consuming instance."""
    try:
        instance = runtime.create_instance(
            kind=req.kind,
            instance_id=req.instance_id,
            declaration_class=req.var_type,
            name=req.name,
            value=req.value,
        )
    except (ValueError, InvalidKeyError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _instance_response(runtime, instance)


@router.get("/instances/{instance_id}", response_model=InstanceResponse)
def get_instance(instance_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    return _instance_response(runtime, _get_instance(runtime, instance_id))


@router.put("/instances/{instance_id}/config", response_model=InstanceResponse)
def put_instance_config(instance_id: str, req: InstanceConfigRequest,
                        runtime: SyncRuntime = Depends(get_runtime)):
    """Change the configured value of a flow or declaring instance. Takes effect on next sync."""
    instance = _get_instance(runtime, instance_id)
    if instance.kind is InstanceKind.CONSUME:
        raise HTTPException(status_code=400, detail="Consuming instances have no value to configure")
    instance.reconfigure(req.value)
    return _instance_response(runtime, instance)


@router.post("/instances/{instance_id}/sync", response_model=LifecycleResponse)
def sync_instance(instance_id: str, background_tasks: BackgroundTasks,
                  runtime: SyncRuntime = Depends(get_runtime)):
    instance = _get_instance(runtime, instance_id)
    result = instance.sync()
    background_tasks.add_task(runtime.dispatch)
    return _lifecycle_response(instance, result)


@router.post("/instances/{instance_id}/drain", response_model=LifecycleResponse)
def drain_instance(instance_id: str, background_tasks: BackgroundTasks,
                   runtime: SyncRuntime = Depends(get_runtime)):
    instance = _get_instance(runtime, instance_id)
    result = instance.drain()
    background_tasks.add_task(runtime.dispatch)
    return _lifecycle_response(instance, result)


@router.post("/instances/{instance_id}/messages", response_model=MessageResponse)
def post_instance_message(instance_id: str, background_tasks: BackgroundTasks, body: Any = Body(None),
                          runtime: SyncRuntime = Depends(get_runtime)):
    """Queue a message (a wake, for consumers) for the instance."""
    _get_instance(runtime, instance_id)
    accepted = runtime.messenger.send_to_instances([instance_id], body if isinstance(body, dict) else {})
    background_tasks.add_task(runtime.dispatch)
    return MessageResponse(accepted=accepted)


@router.delete("/instances/{instance_id}", response_model=LifecycleResponse)
def delete_instance(instance_id: str, background_tasks: BackgroundTasks,
                    runtime: SyncRuntime = Depends(get_runtime)):
    """Drain an instance and remove it."""
    instance = _get_instance(runtime, instance_id)
    result = runtime.remove_instance(instance_id)
    background_tasks.add_task(runtime.dispatch)
    return _lifecycle_response(instance, result)


@router.get("/instances/{instance_id}/events", response_model=EventListResponse)
def list_instance_events(instance_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    instance = _get_instance(runtime, instance_id)
    events = [_redact_event(instance, payload) for payload in runtime.events.events_for(instance_id)]
    return EventListResponse(instance_id=instance_id, events=events)


def create_app(runtime: SyncRuntime = None) -> FastAPI:
    """Build the application. Without a runtime one is created from config on first request."""
    application = FastAPI(
        title="Variable Sync API",
        version=VERSION,
        description="Project variables and secrets with ownership-locked synchronization",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None
    )
    application.state.runtime = runtime
    application.include_router(router)
    return application


app = create_app()
