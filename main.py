from __future__ import annotations

import secrets
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from sqlopt import db
from sqlopt.api_models import ApplyResponse, DesiredState, ObservedState, ReadRequest, TestResponse
from sqlopt.connector import ConfigurationCommitError, InstanceConnectionError
from sqlopt.reconciler import ConfigurationOptionNotFound, Reconciler
from sqlopt.service_ops import RestartError, RestartTimeout
from sqlopt.settings import settings

app = FastAPI(title="SQL Server Option Reconciler")
security = HTTPBasic()

# Most specific first: RestartTimeout is a RestartError.
ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (ConfigurationOptionNotFound, 404),
    (InstanceConnectionError, 502),
    (RestartTimeout, 504),
    (RestartError, 500),
    (ConfigurationCommitError, 500),
]


@app.on_event("startup")
def startup() -> None:
    db.init_db()


def _error_response(request: Request, exc: Exception) -> JSONResponse:
    code = next(c for cls, c in ERROR_STATUS if isinstance(exc, cls))
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


for _cls, _ in ERROR_STATUS:
    app.add_exception_handler(_cls, _error_response)


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    if not (
        secrets.compare_digest(credentials.username, settings.api_user)
        and secrets.compare_digest(credentials.password, settings.api_password)
    ):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def get_reconciler() -> Reconciler:
    return Reconciler()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.post("/configuration/read", response_model=ObservedState)
def read_configuration(
    req: ReadRequest,
    username: str = Depends(get_current_username),
    reconciler: Reconciler = Depends(get_reconciler),
) -> ObservedState:
    return reconciler.read(req.server_name, req.instance_name, req.option_name, req.restart_service, req.restart_timeout)


@app.post("/configuration/test", response_model=TestResponse)
def test_configuration(
    desired: DesiredState,
    username: str = Depends(get_current_username),
    reconciler: Reconciler = Depends(get_reconciler),
) -> TestResponse:
    outcome = reconciler.test(desired)
    return TestResponse(outcome=outcome, in_desired_state=outcome.in_desired_state)


@app.post("/configuration/apply", response_model=ApplyResponse)
def apply_configuration(
    desired: DesiredState,
    username: str = Depends(get_current_username),
    reconciler: Reconciler = Depends(get_reconciler),
) -> ApplyResponse:
    if not settings.allow_apply:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Apply is disabled (SQLOPT_ALLOW_APPLY=false).")
    reconciler.apply(desired)
    return ApplyResponse()


@app.get("/events")
def events(limit: int = Query(50, ge=1, le=1000), username: str = Depends(get_current_username)) -> list[dict]:
    return db.latest_events(limit)


@app.get("/runs")
def runs(limit: int = Query(50, ge=1, le=1000), username: str = Depends(get_current_username)) -> list[dict]:
    return [asdict(r) for r in db.list_runs(limit)]
