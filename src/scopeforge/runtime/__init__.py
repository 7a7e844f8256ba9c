"""Request-time binding and the psycopg repository."""

from scopeforge.runtime.binder import BoundQuery, ListRequest, bind_list, to_psycopg
from scopeforge.runtime.repository import ModelRepository

__all__ = [
    "BoundQuery",
    "ListRequest",
    "bind_list",
    "to_psycopg",
    "ModelRepository",
]
