# tests/test_chat.py — Chat turn lock protocol
import asyncio

import pytest

from cache import DashboardCache
from chat import ChatTurnCoordinator, APOLOGY, AI_NAME, SYSTEM_INSTRUCTION
from database import build_session_maker
from errors import ChatBusy, CompletionFailure
from models import ChatRole, SINGLETON_ID
from remote_store import RemoteStore
from tests.conftest import CountingStore, FakeAIClient


def _assert_turn_completed(cache: DashboardCache, user_content: str, reply: str):
    messages = cache.get_chat_messages()
    assert [m.role for m in messages[-2:]] == [ChatRole.USER, ChatRole.MODEL]
    assert messages[-2].content == user_content
    assert messages[-1].content == reply
    assert messages[-1].user_id is None
    state = cache.get_chat_state()
    assert state.is_locked is False
    assert state.locked_by_user_id is None


@pytest.mark.asyncio
async def test_successful_turn(cache, admin):
    ai = FakeAIClient(reply="Claro, vamos priorizar o deploy.")
    coordinator = ChatTurnCoordinator(cache, ai)

    await coordinator.send_turn("Qual a prioridade hoje?", admin["id"])

    _assert_turn_completed(cache, "Qual a prioridade hoje?", "Claro, vamos priorizar o deploy.")
    assert cache.get_chat_messages()[-2].user_id == admin["id"]
    system_instruction, parts = ai.calls[0]
    assert system_instruction == SYSTEM_INSTRUCTION
    assert parts[0].endswith("Ana Admin (pergunta atual): Qual a prioridade hoje?")


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    CompletionFailure("quota exceeded"),
    RuntimeError("network down"),
    asyncio.TimeoutError(),
])
async def test_failed_completion_produces_apology_and_unlocks(cache, admin, error):
    coordinator = ChatTurnCoordinator(cache, FakeAIClient(error=error))

    await coordinator.send_turn("Olá?", admin["id"])

    _assert_turn_completed(cache, "Olá?", APOLOGY)
    assert len([m for m in cache.get_chat_messages() if m.role == ChatRole.MODEL]) == 1


@pytest.mark.asyncio
async def test_unconfigured_ai_still_answers(cache, admin):
    coordinator = ChatTurnCoordinator(cache, FakeAIClient(configured=False, error=CompletionFailure("no key")))
    assert not coordinator.is_ai_configured()

    await coordinator.send_turn("Tem alguém aí?", admin["id"])
    _assert_turn_completed(cache, "Tem alguém aí?", APOLOGY)


@pytest.mark.asyncio
async def test_busy_lock_rejects_without_side_effects(store, settings, admin, member):
    counting = CountingStore(store)
    session = DashboardCache(counting, settings)
    await session.restore_session(admin["id"])
    await session.set_chat_lock(True, member["id"])
    counting.writes.clear()

    ai = FakeAIClient()
    coordinator = ChatTurnCoordinator(session, ai)
    with pytest.raises(ChatBusy) as exc:
        await coordinator.send_turn("Posso falar?", admin["id"])

    assert exc.value.locked_by_user_id == member["id"]
    assert counting.writes == []
    assert ai.calls == []
    assert session.get_chat_messages() == []
    session.dispose()


@pytest.mark.asyncio
async def test_context_window_is_bounded(cache, admin, member):
    for i in range(12):
        if i % 2:
            await cache.append_chat_message(ChatRole.MODEL, f"resposta {i}")
        else:
            await cache.append_chat_message(ChatRole.USER, f"pergunta {i}", member["id"])

    ai = FakeAIClient()
    coordinator = ChatTurnCoordinator(cache, ai, context_size=10)
    await coordinator.send_turn("nova pergunta", admin["id"])

    lines = ai.calls[0][1][0].split("\n")
    assert len(lines) == 11
    assert lines[0] == "Bruno Silva: pergunta 2"
    assert lines[1] == f"{AI_NAME}: resposta 3"
    assert lines[-1] == "Ana Admin (pergunta atual): nova pergunta"
    assert sum("nova pergunta" in line for line in lines) == 1


@pytest.mark.asyncio
async def test_unconditional_claim_overrides_stale_lock(cache, app, admin, member):
    """Default claim is a plain write: a lock the cache has not seen yet is overwritten"""
    silent_store = RemoteStore(build_session_maker(app.state.engine))
    await silent_store.update("chat_state", {"is_locked": True, "locked_by_user_id": member["id"]},
                              match={"id": SINGLETON_ID})
    assert cache.get_chat_state().is_locked is False

    await ChatTurnCoordinator(cache, FakeAIClient(reply="ok")).send_turn("oi", admin["id"])
    _assert_turn_completed(cache, "oi", "ok")


@pytest.mark.asyncio
async def test_conditional_claim_lets_store_arbitrate(cache, app, admin, member):
    silent_store = RemoteStore(build_session_maker(app.state.engine))
    await silent_store.update("chat_state", {"is_locked": True, "locked_by_user_id": member["id"]},
                              match={"id": SINGLETON_ID})

    ai = FakeAIClient()
    coordinator = ChatTurnCoordinator(cache, ai, conditional_claim=True)
    with pytest.raises(ChatBusy) as exc:
        await coordinator.send_turn("oi", admin["id"])

    assert exc.value.locked_by_user_id == member["id"]
    assert ai.calls == []
    assert cache.get_chat_messages() == []
    assert cache.get_chat_state().is_locked is True


@pytest.mark.asyncio
async def test_history_is_chronological_and_capped(store, settings, admin):
    settings.chat_history_limit = 3
    session = DashboardCache(store, settings)
    await session.restore_session(admin["id"])
    for i in range(5):
        await session.append_chat_message(ChatRole.USER, f"m{i}", admin["id"])

    assert [m.content for m in session.get_chat_messages()] == ["m2", "m3", "m4"]
    session.dispose()


@pytest.mark.asyncio
async def test_other_sessions_see_lock_transitions(cache, store, settings, member):
    """Every lock write reaches the other sessions through the change feed"""
    other = DashboardCache(store, settings)
    await other.restore_session(member["id"])
    observed = []
    other.subscribe(lambda: observed.append(other.get_chat_state().is_locked))
    observed.clear()

    await ChatTurnCoordinator(cache, FakeAIClient()).send_turn("oi", cache.current_user.id)

    assert True in observed
    assert observed[-1] is False
    assert [m.role for m in other.get_chat_messages()] == [ChatRole.USER, ChatRole.MODEL]
    other.dispose()
