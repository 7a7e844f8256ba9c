"""FastAPI router factory for a compiled model.

Each route contract becomes an endpoint. The route gate answers 403 when
the caller lacks the required permission; row-level misses answer 404 so
that a hidden row looks exactly like an absent one.
"""

import uuid
from contextlib import contextmanager
from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from scopeforge.api.models import (
    child_payload_model,
    nested_capabilities,
    payload_model,
    project_row,
)
from scopeforge.auth.dependencies import require_authenticated
from scopeforge.auth.permissions import check_route
from scopeforge.auth.types import AuthContext
from scopeforge.compiler import CompiledModel
from scopeforge.endpoints.contracts import RouteContract, capability_table
from scopeforge.errors import QueryError
from scopeforge.runtime.binder import ListRequest
from scopeforge.runtime.repository import ModelRepository


@contextmanager
def translate_errors():
    """Re-raise runtime query errors as HTTP errors with their status hint."""
    try:
        yield
    except QueryError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


def create_model_router(
    compiled: CompiledModel,
    get_repository: Callable[..., ModelRepository],
    get_auth: Callable[..., AuthContext] = require_authenticated,
    prefix: str = "",
) -> APIRouter:
    """Create the router for one compiled model.

    Args:
        compiled: The compiled model whose route contracts to expose
        get_repository: Dependency returning a ModelRepository for the model
        get_auth: Dependency returning the caller's AuthContext
        prefix: Optional path prefix, e.g. "/api"

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix=prefix, tags=[compiled.name])
    routes = {(r.operation, r.relationship): r for r in compiled.routes}
    capabilities = capability_table(compiled.model)
    nested = nested_capabilities(compiled)
    Payload = payload_model(compiled)

    def project(row: dict[str, Any]) -> dict[str, Any]:
        return project_row(row, capabilities, nested)

    list_route = routes[("list", None)]

    @router.get(list_route.path)
    def list_rows(
        request: Request,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> list[dict[str, Any]]:
        with translate_errors():
            check_route(auth, list_route)
            query = ListRequest.from_query(request.query_params.multi_items())
            return [project(r) for r in repo.list(auth, query)]

    get_route = routes[("get", None)]

    @router.get(get_route.path)
    def get_row(
        id: uuid.UUID,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> dict[str, Any]:
        with translate_errors():
            check_route(auth, get_route)
            return project(repo.get(auth, id))

    create_route = routes[("create", None)]

    @router.post(create_route.path, status_code=201)
    def create_row(
        payload: Payload,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> dict[str, Any]:
        with translate_errors():
            check_route(auth, create_route)
            return project(repo.create(auth, payload.model_dump(exclude_unset=True)))

    update_route = routes[("update", None)]

    @router.put(update_route.path)
    def update_row(
        id: uuid.UUID,
        payload: Payload,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> dict[str, Any]:
        with translate_errors():
            check_route(auth, update_route)
            return project(repo.update(auth, id, payload.model_dump(exclude_unset=True)))

    delete_route = routes[("delete", None)]

    @router.delete(delete_route.path, status_code=204)
    def delete_row(
        id: uuid.UUID,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> Response:
        with translate_errors():
            check_route(auth, delete_route)
            repo.delete(auth, id)
        return Response(status_code=204)

    for rel, plan in compiled.child_plans.items():
        child_routes = {op: r for (op, r_rel), r in routes.items() if r_rel == rel}
        _add_child_routes(
            router,
            rel,
            child_routes,
            capabilities=capability_table(plan.child),
            ChildPayload=child_payload_model(plan.child, plan.relationship.parent_field),
            get_repository=get_repository,
            get_auth=get_auth,
        )

    return router


def _add_child_routes(
    router: APIRouter,
    rel: str,
    routes: dict[str, RouteContract],
    capabilities: list,
    ChildPayload: type,
    get_repository: Callable[..., ModelRepository],
    get_auth: Callable[..., AuthContext],
) -> None:
    """Register nested routes for one relationship."""

    def project(row: dict[str, Any]) -> dict[str, Any]:
        return project_row(row, capabilities)

    if "child_list" in routes:
        list_route = routes["child_list"]

        @router.get(list_route.path)
        def list_children(
            id: uuid.UUID,
            request: Request,
            repo: ModelRepository = Depends(get_repository),
            auth: AuthContext = Depends(get_auth),
        ) -> list[dict[str, Any]]:
            with translate_errors():
                check_route(auth, list_route)
                query = ListRequest.from_query(request.query_params.multi_items())
                return [project(r) for r in repo.list_children(auth, rel, id, query)]

        create_route = routes["child_create"]

        @router.post(create_route.path, status_code=201)
        def create_child(
            id: uuid.UUID,
            payload: ChildPayload,
            repo: ModelRepository = Depends(get_repository),
            auth: AuthContext = Depends(get_auth),
        ) -> dict[str, Any]:
            with translate_errors():
                check_route(auth, create_route)
                return project(repo.create_child(auth, rel, id, payload.model_dump()))

        get_route = routes["child_get"]

        @router.get(get_route.path)
        def get_child(
            id: uuid.UUID,
            child_id: uuid.UUID,
            repo: ModelRepository = Depends(get_repository),
            auth: AuthContext = Depends(get_auth),
        ) -> dict[str, Any]:
            with translate_errors():
                check_route(auth, get_route)
                return project(repo.get_child(auth, rel, id, child_id))

        update_route = routes["child_update"]

        @router.put(update_route.path)
        def update_child(
            id: uuid.UUID,
            child_id: uuid.UUID,
            payload: ChildPayload,
            repo: ModelRepository = Depends(get_repository),
            auth: AuthContext = Depends(get_auth),
        ) -> dict[str, Any]:
            with translate_errors():
                check_route(auth, update_route)
                return project(repo.update_child(auth, rel, id, child_id, payload.model_dump()))

        delete_route = routes["child_delete"]

        @router.delete(delete_route.path, status_code=204)
        def delete_child(
            id: uuid.UUID,
            child_id: uuid.UUID,
            repo: ModelRepository = Depends(get_repository),
            auth: AuthContext = Depends(get_auth),
        ) -> Response:
            with translate_errors():
                check_route(auth, delete_route)
                repo.delete_child(auth, rel, id, child_id)
            return Response(status_code=204)

        return

    get_route = routes["child_get"]

    @router.get(get_route.path)
    def get_single_child(
        id: uuid.UUID,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> dict[str, Any]:
        with translate_errors():
            check_route(auth, get_route)
            return project(repo.get_single_child(auth, rel, id))

    upsert_route = routes["child_upsert"]

    @router.put(upsert_route.path)
    def upsert_single_child(
        id: uuid.UUID,
        payload: ChildPayload,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> dict[str, Any]:
        with translate_errors():
            check_route(auth, upsert_route)
            return project(repo.upsert_single_child(auth, rel, id, payload.model_dump()))

    delete_route = routes["child_delete"]

    @router.delete(delete_route.path, status_code=204)
    def delete_single_child(
        id: uuid.UUID,
        repo: ModelRepository = Depends(get_repository),
        auth: AuthContext = Depends(get_auth),
    ) -> Response:
        with translate_errors():
            check_route(auth, delete_route)
            repo.delete_all_children(auth, rel, id)
        return Response(status_code=204)
