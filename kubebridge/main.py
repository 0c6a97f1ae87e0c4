#!/usr/bin/env python3
"""
KubeBridge - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Runs the API server

All business logic is in the modules, following black box principles.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kubebridge.logging_config import configure_logging, get_logging_config
from kubebridge.modules.api import (
    ClusterRequest,
    DataResponse,
    KubectlRequest,
    MessageResponse,
    ScaleRequest,
    ShellRequest,
    TestResult,
)
from kubebridge.modules.clusters import ClusterService
from kubebridge.modules.config import ConfigModule, ConnectionSettings, get_config
from kubebridge.modules.connection import (
    AuthenticationError,
    ClusterExistsError,
    CommandRejectedError,
    CommandTimeoutError,
    ConfigValidationError,
    ConnectionLifecycleManager,
    ConnectionTimeoutError,
    KubeBridgeError,
    NotActiveConnectionError,
    NotFoundError,
    build_connection_services,
)
from kubebridge.modules.kubectl import KubernetesService
from kubebridge.modules.storage import StorageModule
from kubebridge.modules.store import ClusterStore

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, 404),
    (ConfigValidationError, 400),
    (CommandRejectedError, 400),
    (ClusterExistsError, 409),
    (NotActiveConnectionError, 409),
    (ConnectionTimeoutError, 504),
    (CommandTimeoutError, 504),
    (AuthenticationError, 502),
)


def status_for(exc: KubeBridgeError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle - initialize and cleanup resources.
    """
    config: ConfigModule = app.state.config

    logger.info("Starting KubeBridge API...")

    storage = StorageModule.from_config(config)
    redis_client = await storage.connect()

    store = ClusterStore(redis_client)
    manager, tester = build_connection_services(store, ConnectionSettings.from_config(config))
    await manager.start()

    app.state.storage = storage
    app.state.store = store
    app.state.manager = manager
    app.state.clusters = ClusterService(store, manager, tester)
    app.state.kubernetes = KubernetesService(manager)

    logger.info("KubeBridge API started successfully")

    yield

    logger.info("Shutting down KubeBridge API...")
    await manager.close_all()
    await storage.disconnect()
    logger.info("KubeBridge API shutdown complete")


def create_app(config: Optional[ConfigModule] = None) -> FastAPI:
    """Build the FastAPI application around a configuration."""
    config = config or get_config()

    app = FastAPI(
        title="KubeBridge API",
        description="Kubernetes access through bastion hosts",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in config.get("cors_origins", "").split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(KubeBridgeError)
    async def kubebridge_error_handler(request: Request, exc: KubeBridgeError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})

    app.include_router(health_router)
    app.include_router(clusters_router)
    app.include_router(k8s_router)
    return app


# Dependency injection helpers


def get_cluster_service(request: Request) -> ClusterService:
    service = getattr(request.app.state, "clusters", None)
    if service is None:
        raise HTTPException(503, "Service not initialized")
    return service


def get_manager(request: Request) -> ConnectionLifecycleManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(503, "Service not initialized")
    return manager


def get_kubernetes(request: Request) -> KubernetesService:
    service = getattr(request.app.state, "kubernetes", None)
    if service is None:
        raise HTTPException(503, "Service not initialized")
    return service


health_router = APIRouter()
clusters_router = APIRouter(prefix="/api/clusters", tags=["clusters"])
k8s_router = APIRouter(prefix="/api/k8s", tags=["k8s"])


@health_router.get("/health")
async def health():
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


# Cluster Endpoints


@clusters_router.get("")
async def list_clusters(service: ClusterService = Depends(get_cluster_service)):
    clusters = await service.list_clusters()
    return {"success": True, "clusters": [c.model_dump(mode="json") for c in clusters]}


@clusters_router.get("/status/all")
async def connection_status(service: ClusterService = Depends(get_cluster_service)):
    clusters = await service.list_clusters()
    return {"success": True, "clusters": [c.model_dump(mode="json") for c in clusters]}


@clusters_router.post("")
async def add_cluster(
    payload: ClusterRequest, service: ClusterService = Depends(get_cluster_service)
):
    """
    Register a cluster. The name becomes its identifier.

    Returns:
        200: Cluster added
        409: Name already taken
    """
    cluster = await service.add_cluster(payload.to_cluster())
    return {"success": True, "cluster_id": cluster.id}


@clusters_router.post("/test", response_model=TestResult)
async def test_cluster(
    payload: ClusterRequest, service: ClusterService = Depends(get_cluster_service)
):
    """Test a configuration without storing it. Always 200; see 'success'."""
    return await service.test_connection(payload.to_cluster())


@clusters_router.get("/{cluster_id}")
async def get_cluster(cluster_id: str, service: ClusterService = Depends(get_cluster_service)):
    summary = await service.get_summary(cluster_id)
    return {"success": True, "cluster": summary.model_dump(mode="json")}


@clusters_router.get("/{cluster_id}/full")
async def get_cluster_full(
    cluster_id: str, service: ClusterService = Depends(get_cluster_service)
):
    """Full configuration including credentials, for the edit form."""
    cluster = await service.get_cluster(cluster_id)
    return {"success": True, "cluster": cluster.model_dump(mode="json", by_alias=True)}


@clusters_router.get("/{cluster_id}/debug-kubeconfig")
async def debug_kubeconfig(
    cluster_id: str, service: ClusterService = Depends(get_cluster_service)
):
    """Numbered kubeconfig lines plus lint findings."""
    return {"success": True, **await service.debug_kubeconfig(cluster_id)}


@clusters_router.put("/{cluster_id}")
async def update_cluster(
    cluster_id: str,
    payload: ClusterRequest,
    service: ClusterService = Depends(get_cluster_service),
):
    cluster = await service.update_cluster(cluster_id, payload.to_cluster())
    result = {"success": True, "cluster_id": cluster.id}
    if cluster.id != cluster_id:
        result.update({"name_changed": True, "old_id": cluster_id, "new_id": cluster.id})
    return result


@clusters_router.delete("/{cluster_id}")
async def delete_cluster(cluster_id: str, service: ClusterService = Depends(get_cluster_service)):
    await service.remove_cluster(cluster_id)
    return {"success": True}


@clusters_router.post("/{cluster_id}/connect")
async def connect_cluster(
    cluster_id: str, manager: ConnectionLifecycleManager = Depends(get_manager)
):
    result = await manager.connect(cluster_id)
    return {"success": True, **result.model_dump(mode="json")}


@clusters_router.post("/{cluster_id}/disconnect", response_model=MessageResponse)
async def disconnect_cluster(
    cluster_id: str, manager: ConnectionLifecycleManager = Depends(get_manager)
):
    await manager.disconnect(cluster_id)
    return MessageResponse(message="Disconnected successfully")


@clusters_router.post("/{cluster_id}/shell")
async def run_shell(
    cluster_id: str,
    payload: ShellRequest,
    manager: ConnectionLifecycleManager = Depends(get_manager),
):
    """Run a raw shell command on the bastion host of a connected cluster."""
    result = await manager.run_shell(cluster_id, payload.command, timeout=payload.timeout_seconds)
    return {"success": True, "data": result.model_dump(mode="json")}


# Kubernetes Endpoints


@k8s_router.get("/{cluster_id}/namespaces", response_model=DataResponse)
async def namespaces(cluster_id: str, k8s: KubernetesService = Depends(get_kubernetes)):
    return DataResponse(data=await k8s.list_namespaces(cluster_id))


@k8s_router.get("/{cluster_id}/namespaces/{namespace}/pods", response_model=DataResponse)
async def pods(cluster_id: str, namespace: str, k8s: KubernetesService = Depends(get_kubernetes)):
    return DataResponse(data=await k8s.list_pods(cluster_id, namespace))


@k8s_router.get("/{cluster_id}/namespaces/{namespace}/pods/{pod_name}", response_model=DataResponse)
async def pod(
    cluster_id: str,
    namespace: str,
    pod_name: str,
    k8s: KubernetesService = Depends(get_kubernetes),
):
    return DataResponse(data=await k8s.get_pod(cluster_id, namespace, pod_name))


@k8s_router.get(
    "/{cluster_id}/namespaces/{namespace}/pods/{pod_name}/logs", response_model=DataResponse
)
async def pod_logs(
    cluster_id: str,
    namespace: str,
    pod_name: str,
    container: Optional[str] = Query(None),
    tail: int = Query(100, ge=0, le=10000),
    previous: bool = Query(False),
    k8s: KubernetesService = Depends(get_kubernetes),
):
    data = await k8s.get_pod_logs(
        cluster_id, namespace, pod_name, tail=tail, container=container, previous=previous
    )
    return DataResponse(data=data)


@k8s_router.get("/{cluster_id}/namespaces/{namespace}/deployments", response_model=DataResponse)
async def deployments(
    cluster_id: str, namespace: str, k8s: KubernetesService = Depends(get_kubernetes)
):
    return DataResponse(data=await k8s.list_deployments(cluster_id, namespace))


@k8s_router.patch(
    "/{cluster_id}/namespaces/{namespace}/deployments/{deployment_name}/scale",
    response_model=DataResponse,
)
async def scale_deployment(
    cluster_id: str,
    namespace: str,
    deployment_name: str,
    payload: ScaleRequest,
    k8s: KubernetesService = Depends(get_kubernetes),
):
    data = await k8s.scale_deployment(cluster_id, namespace, deployment_name, payload.replicas)
    return DataResponse(data=data)


@k8s_router.get("/{cluster_id}/namespaces/{namespace}/services", response_model=DataResponse)
async def services(
    cluster_id: str, namespace: str, k8s: KubernetesService = Depends(get_kubernetes)
):
    return DataResponse(data=await k8s.list_services(cluster_id, namespace))


@k8s_router.get("/{cluster_id}/namespaces/{namespace}/configmaps", response_model=DataResponse)
async def configmaps(
    cluster_id: str, namespace: str, k8s: KubernetesService = Depends(get_kubernetes)
):
    return DataResponse(data=await k8s.list_configmaps(cluster_id, namespace))


@k8s_router.get("/{cluster_id}/namespaces/{namespace}/secrets", response_model=DataResponse)
async def secrets(
    cluster_id: str, namespace: str, k8s: KubernetesService = Depends(get_kubernetes)
):
    return DataResponse(data=await k8s.list_secrets(cluster_id, namespace))


@k8s_router.get(
    "/{cluster_id}/namespaces/{namespace}/serviceaccounts", response_model=DataResponse
)
async def service_accounts(
    cluster_id: str, namespace: str, k8s: KubernetesService = Depends(get_kubernetes)
):
    return DataResponse(data=await k8s.list_service_accounts(cluster_id, namespace))


@k8s_router.post("/{cluster_id}/kubectl", response_model=DataResponse)
async def kubectl(
    cluster_id: str,
    payload: KubectlRequest,
    k8s: KubernetesService = Depends(get_kubernetes),
):
    """Generic kubectl execution for advanced users; dangerous verbs are refused."""
    return DataResponse(data=await k8s.run_kubectl(cluster_id, payload.command))


def main() -> None:
    config = get_config()
    configure_logging(config.get("log_level"))
    uvicorn.run(
        create_app(config),
        host=config.get("host"),
        port=config.get("port"),
        log_config=get_logging_config(config.get("log_level")),
    )


if __name__ == "__main__":
    main()
