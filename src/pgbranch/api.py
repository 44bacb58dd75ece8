"""
HTTP surface over a records table.

    app = create_app(engine, table="cache.records")

Each request binds to the branch named in its path; bindings share the
engine and the schema is asserted once, at app creation.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from .errors import (
    InvalidIdentifierError,
    PgBranchError,
    RecordNotFoundError,
    SerializationError,
)
from .logging import logger
from .runtime import PgBranch


class MergeRequest(BaseModel):
    target: str


class ReplaceRequest(BaseModel):
    source: str


class RowsResponse(BaseModel):
    branch: str
    rows: int


def _error(status: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


def create_app(
    engine: Engine,
    *,
    table: str = "cache_records",
    branch: str = "main",
    use_cache: bool = False,
    **fastapi_kwargs: Any,
) -> FastAPI:
    root = PgBranch(engine, branch, table, use_cache)
    app = FastAPI(**fastapi_kwargs)
    app.state.pgbranch = root

    @app.exception_handler(RecordNotFoundError)
    async def _not_found(request: Request, exc: RecordNotFoundError):
        return _error(404, exc)

    @app.exception_handler(InvalidIdentifierError)
    async def _invalid(request: Request, exc: InvalidIdentifierError):
        return _error(422, exc)

    @app.exception_handler(SerializationError)
    async def _conflict(request: Request, exc: SerializationError):
        return _error(409, exc)

    @app.exception_handler(PgBranchError)
    async def _failed(request: Request, exc: PgBranchError):
        logger.error("request %s %s failed: %s", request.method, request.url.path, exc)
        return _error(500, exc)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "running", "table": table}

    @app.get("/branches")
    def list_branches() -> List[str]:
        return root.branches()

    @app.put("/branches/{branch}/records/{file}/{key}", status_code=204)
    async def save_record(branch: str, file: str, key: str, request: Request) -> Response:
        data = await request.body()
        await run_in_threadpool(root.bind(branch).save, file, key, data)
        return Response(status_code=204)

    @app.get("/branches/{branch}/records/{file}/{key}")
    def read_record(branch: str, file: str, key: str) -> Response:
        data = root.bind(branch).read(file, key)
        if data is None:
            return Response(status_code=204)
        return Response(content=data, media_type="application/octet-stream")

    @app.delete("/branches/{branch}")
    def delete_branch(branch: str) -> RowsResponse:
        return RowsResponse(branch=branch, rows=root.delete_branch(branch))

    @app.delete("/branches/{branch}/keys/{key}")
    def delete_branch_key(branch: str, key: str) -> RowsResponse:
        return RowsResponse(branch=branch, rows=root.delete_branch_key(branch, key))

    @app.post("/branches/{branch}/merge")
    def merge_branch(branch: str, body: MergeRequest) -> RowsResponse:
        rows = root.bind(branch).merge_to(body.target)
        return RowsResponse(branch=body.target, rows=rows)

    @app.post("/branches/{branch}/replace")
    def replace_branch(branch: str, body: ReplaceRequest) -> RowsResponse:
        rows = root.bind(branch).replace_from(body.source)
        return RowsResponse(branch=branch, rows=rows)

    return app
