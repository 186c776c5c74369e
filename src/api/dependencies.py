"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException
from starlette.requests import HTTPConnection

from llm.base import BaseLLMClient
from prompts.catalog import AssetCatalog
from relay.conversations import ConversationStore
from relay.errors import RelayError
from relay.registry import SessionRegistry


@lru_cache(maxsize=1)
def _llm_factory() -> BaseLLMClient:
    # Lazy import so the OpenAI client is only built once a call arrives.
    from llm.factory import build_llm_client

    return build_llm_client()


def get_llm_client() -> BaseLLMClient:
    return _llm_factory()


def get_registry(connection: HTTPConnection) -> SessionRegistry:
    return connection.app.state.registry


def get_catalog(connection: HTTPConnection) -> AssetCatalog:
    return connection.app.state.catalog


def get_conversations(connection: HTTPConnection) -> ConversationStore:
    return connection.app.state.conversations


def to_http_exception(exc: RelayError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)
