from __future__ import annotations

import asyncio

from llm.base import TextDelta
from relay.conversations import ConversationStore
from relay.response_engine import StreamingResponseEngine
from relay.tool_router import ToolRouter
from tools.builtin import BUILTIN_TOOLS

from conftest import FakeLLM


def _builder(catalog, llm):
    def build():
        return StreamingResponseEngine(
            llm, ToolRouter(BUILTIN_TOOLS, catalog.get_manifest("defaultToolManifest")), context="Be brief."
        )

    return build


def test_store_reuses_known_sessions_and_mints_new_ids(catalog):
    store = ConversationStore()
    build = _builder(catalog, FakeLLM())

    async def _run():
        first = await store.get_or_create(None, build)
        again = await store.get_or_create(first.session_id, build)
        other = await store.get_or_create("not-a-session", build)
        return first, again, other

    first, again, other = asyncio.run(_run())

    assert again is first
    assert other.session_id not in (first.session_id, "not-a-session")
    assert len(store) == 2


def test_reply_joins_text_tokens(catalog):
    llm = FakeLLM([TextDelta("Sure, "), TextDelta("bye.")])
    store = ConversationStore()

    async def _run():
        session = await store.get_or_create(None, _builder(catalog, llm))
        return await session.reply("user", "Thanks")

    assert asyncio.run(_run()) == "Sure, bye."


def test_close_all_empties_store_and_closes_engines(catalog):
    store = ConversationStore()

    async def _run():
        session = await store.get_or_create(None, _builder(catalog, FakeLLM()))
        await store.close_all()
        await session.engine.generate_response("user", "Still there?")
        return session

    session = asyncio.run(_run())

    assert len(store) == 0
    assert session.engine.history == []
