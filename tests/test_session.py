"""End-to-end tests: ChatSession talking to the FastAPI app in process."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import httpx
import pytest
from client.session import ChatSession
from errors import AuthenticationError, ProviderError, ValidationError

REPLY = "Let the breath guide you."


def make_session(app, token="valid-token"):
    return ChatSession(
        base_url="http://testserver",
        access_token=token,
        transport=httpx.ASGITransport(app=app)
    )


class TestChatSession:

    @pytest.mark.asyncio
    async def test_first_send_adopts_conversation(self, chat_app):
        """Sending without an id creates a conversation and makes it active."""
        async with make_session(chat_app) as session:
            result = await session.send_message("How do I start my manifestation journey?")

            assert session.current_conversation_id == result.conversation_id
            conversation = await session.load_conversation(result.conversation_id)
            assert [(m.role, m.content) for m in conversation.messages] == [
                ("user", "How do I start my manifestation journey?"),
                ("assistant", REPLY),
            ]

    @pytest.mark.asyncio
    async def test_two_sends_in_order(self, chat_app):
        async with make_session(chat_app) as session:
            await session.send_message("First")
            await session.send_message("Second")

            conversation = await session.load_conversation(session.current_conversation_id)
            assert [m.content for m in conversation.messages] == ["First", REPLY, "Second", REPLY]

    @pytest.mark.asyncio
    async def test_empty_message_rejected_locally(self, chat_app, chat_services):
        async with make_session(chat_app) as session:
            with pytest.raises(ValidationError):
                await session.send_message("   ")

        chat_services.llm_client.generate.assert_not_called()
        assert chat_services.supabase.get_table().calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_rolls_back(self, chat_app, chat_services):
        async with make_session(chat_app) as session:
            await session.send_message("Hello")
            before = session.store.get(session.current_conversation_id)
            chat_services.llm_client.generate.side_effect = ProviderError(
                "The model returned an empty reply.", code="EMPTY_COMPLETION"
            )

            with pytest.raises(ProviderError) as exc_info:
                await session.send_message("Tell me about 3-6-9")

            assert exc_info.value.code == "EMPTY_COMPLETION"
            assert session.store.get(session.current_conversation_id).messages == before.messages

    @pytest.mark.asyncio
    async def test_load_uses_cache_until_stale(self, chat_app, chat_services):
        async with make_session(chat_app) as session:
            result = await session.send_message("Hello")
            calls_before = len(chat_services.supabase.get_table().calls)

            await session.load_conversation(result.conversation_id)
            assert len(chat_services.supabase.get_table().calls) == calls_before

            session.store.invalidate(result.conversation_id)
            await session.load_conversation(result.conversation_id)
            assert len(chat_services.supabase.get_table().calls) == calls_before + 1
            assert not session.store.is_stale(result.conversation_id)

    @pytest.mark.asyncio
    async def test_new_conversation_and_listing(self, chat_app):
        async with make_session(chat_app) as session:
            first = await session.send_message("First topic")
            session.start_new_conversation()
            second = await session.send_message("Second topic")

            assert first.conversation_id != second.conversation_id
            summaries = await session.list_conversations()
            assert {s.id for s in summaries} == {first.conversation_id, second.conversation_id}

    @pytest.mark.asyncio
    async def test_delete_conversation(self, chat_app):
        async with make_session(chat_app) as session:
            result = await session.send_message("Hello")

            await session.delete_conversation(result.conversation_id)

            assert session.current_conversation_id is None
            assert not session.store.contains(result.conversation_id)
            assert await session.list_conversations() == []

    @pytest.mark.asyncio
    async def test_bad_token(self, chat_app):
        async with make_session(chat_app, token="forged") as session:
            with pytest.raises(AuthenticationError):
                await session.send_message("Hello")

            assert session.current_conversation_id is None

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, chat_app):
        session = make_session(chat_app)

        await session.close()
        await session.close()
