import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError

from config.settings import DOMAIN_USER, METRICS_ENABLED
from core.credential_store import DomainCredentialStore
from core.logger import log_event
from core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from core.provisioner import Provisioner
from schemas.provision_schema import (
    DomainCredentialSchema,
    HostOutcome,
    ProvisioningRequest,
    ProvisionRunSchema,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if METRICS_ENABLED:
        log_event("[app] Metrics enabled")
    yield


app = FastAPI(
    title="VM Provisioner API",
    description=(
        "Create VMs on libvirt hypervisor hosts.\n\n"
        "Features:\n"
        "- Disk, VM definition, install media, autostart and notes per host\n"
        "- Post-install snapshot and directory domain join\n"
        "- Per-VM provision log on each host\n"
        "- Prometheus metrics"
    ),
    version="1.0.0",
    lifespan=lifespan,
)

provisioner = Provisioner()


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    endpoint = request.url.path
    method = request.method

    if not METRICS_ENABLED or endpoint == "/metrics":
        return await call_next(request)

    start_time = time.time()
    try:
        response = await call_next(request)
        return response
    finally:
        duration = time.time() - start_time
        REQUEST_COUNT.labels(method=method, endpoint=endpoint).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration)


@app.get("/", tags=["System"])
def root():
    return {
        "message": "VM Provisioner API is running",
        "version": app.version,
    }


@app.post("/provision", tags=["Provisioning"], response_model=list[HostOutcome])
async def provision(payload: ProvisionRunSchema):
    credential = DomainCredentialStore.get_credential()
    if credential is None:
        raise HTTPException(
            status_code=400,
            detail="Domain credential not set, call /credentials/domain first",
        )

    try:
        request = ProvisioningRequest.from_settings(credential, **payload.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_event(f"[app] Provisioning requested for VM '{request.vm_name}' on {list(request.hosts)}")
    return await provisioner.run(request)


@app.post("/credentials/domain", tags=["Credentials"])
def set_domain_credential(payload: DomainCredentialSchema):
    username = payload.username or DOMAIN_USER
    DomainCredentialStore.set_credential(username, payload.password)
    return {"status": "ok", "message": f"Domain credential for {username} stored in memory"}


@app.post("/credentials/clear", tags=["Credentials"])
def clear_domain_credential():
    DomainCredentialStore.clear_credential()
    return {"status": "ok", "message": "Domain credential cleared"}


@app.get("/metrics", tags=["Monitoring"])
def metrics():
    if not METRICS_ENABLED:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
