"""Tests for SessionController: turns, supersession, stop, edit/resend, regenerate and chat management."""

import asyncio
import base64
import threading

from localchat.agents.session_controller import generate_title
from localchat.core.engine import create_engine
from localchat.core.models import TurnState, UploadedFile
from localchat.core.prompts import GENERATION_ERROR_MESSAGE

from conftest import FakeClient, FakeSearch, GatedClient, wait_until


def _engine(client=None, search=None):
    return create_engine(client=client or FakeClient(), search_client=search or FakeSearch())


def _gate_retrieval(engine):
    """Hold each turn in awaiting-context until its gate is set."""
    gates = []
    retrieve = engine.context_manager.get_document_context

    async def gated(query, prompt_id=None):
        gate = asyncio.Event()
        gates.append(gate)
        await gate.wait()
        return await retrieve(query, prompt_id)

    engine.context_manager.get_document_context = gated
    return gates


# ---------------------------------------------------------------------------
# send_message
# ---------------------------------------------------------------------------


class TestSendMessage:
    def test_completed_turn(self, engine):
        ctl = engine.sessions
        message = asyncio.run(ctl.send_message("Hi there", "llama3.2"))

        session = ctl.get_chat()
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.messages[0].content == "Hi there"
        assert message is session.messages[1]
        assert message.content == "Hello, world"
        assert message.streaming is False
        assert session.model == "llama3.2"
        assert not ctl.is_generating(session.id)

    def test_tokens_reach_callback(self, engine):
        seen = []
        asyncio.run(engine.sessions.send_message("Hi", "m", on_token=seen.append))
        assert seen == ["Hello", ", ", "world"]

    def test_blank_content_or_model_is_noop(self, engine):
        ctl = engine.sessions
        assert asyncio.run(ctl.send_message("   ", "m")) is None
        assert asyncio.run(ctl.send_message("hello", "")) is None
        assert ctl.list_chats() == []

    def test_unknown_session_is_noop(self, engine):
        assert asyncio.run(engine.sessions.send_message("hello", "m", session_id="missing")) is None

    def test_reuses_active_chat(self, engine):
        ctl = engine.sessions
        asyncio.run(ctl.send_message("one", "m"))
        asyncio.run(ctl.send_message("two", "m"))
        assert len(ctl.list_chats()) == 1
        assert len(ctl.get_chat().messages) == 4

    def test_history_is_sent_with_second_turn(self):
        client = FakeClient()
        engine = _engine(client)
        asyncio.run(engine.sessions.send_message("my name is Ada", "m"))
        asyncio.run(engine.sessions.send_message("what is my name?", "m"))
        assert "user: my name is Ada" in client.calls[1]["prompt"]

    def test_generation_failure_marks_errored(self):
        engine = _engine(FakeClient(tokens=[], error=RuntimeError("ollama down")))
        message = asyncio.run(engine.sessions.send_message("Hi", "m"))

        assert message.content == GENERATION_ERROR_MESSAGE
        assert message.streaming is False
        turns = list(engine.telemetry.turns.values())
        assert turns[-1].state == TurnState.ERRORED

    def test_completed_state_recorded(self, engine):
        asyncio.run(engine.sessions.send_message("Hi", "m"))
        turn = list(engine.telemetry.turns.values())[-1].to_dict()
        assert turn["state"] == "completed"
        assert [t["state"] for t in turn["transitions"]] == ["awaiting-context", "streaming", "completed"]


class TestAttachments:
    def test_text_file_grounds_the_answer(self):
        client = FakeClient()
        engine = _engine(client)
        upload = UploadedFile(
            name="facts.md",
            media_type="text/markdown",
            data=b"The capital of Freedonia is Fredville."
        )
        asyncio.run(engine.sessions.send_message("What is the capital of Freedonia?", "m", files=[upload]))

        prompt = client.calls[0]["prompt"]
        assert "Fredville" in prompt
        user = engine.sessions.get_chat().messages[0]
        assert user.files[0].name == "facts.md"
        assert user.files[0].icon == "📄"
        assert "facts.md" in engine.store.list_sources()

    def test_image_sent_to_model(self):
        client = FakeClient()
        engine = _engine(client)
        data = b"not-really-a-png"
        upload = UploadedFile(name="photo.png", media_type="image/png", data=data)
        asyncio.run(engine.sessions.send_message("what is in this picture?", "llava", files=[upload]))

        assert client.calls[0]["images"] == [base64.b64encode(data).decode("ascii")]

    def test_previous_turn_attachment_not_in_scope(self):
        client = FakeClient()
        engine = _engine(client)
        upload = UploadedFile(name="old.txt", media_type="text/plain", data=b"The secret code is swordfish.")
        asyncio.run(engine.sessions.send_message("remember the secret code", "m", files=[upload]))
        asyncio.run(engine.sessions.send_message("what is the secret code?", "m"))
        assert "<context>" not in client.calls[1]["prompt"]

    def test_attachments_registered_on_loop_thread(self):
        engine = _engine()
        threads = []
        register = engine.context_manager.add_document_to_prompt

        def recording(*args, **kwargs):
            threads.append(threading.get_ident())
            return register(*args, **kwargs)

        engine.context_manager.add_document_to_prompt = recording
        upload = UploadedFile(name="a.txt", media_type="text/plain", data=b"alpha beta")
        asyncio.run(engine.sessions.send_message("read this", "m", files=[upload]))

        assert threads == [threading.get_ident()]
        assert "a.txt" in engine.store.list_sources()

    def test_turn_reuses_uploaded_prompt(self):
        client = FakeClient()
        engine = _engine(client)
        prompt_id = engine.context_manager.start_new_prompt()
        engine.ingestor.ingest(
            UploadedFile(name="plan.txt", media_type="text/plain", data=b"The launch window opens in May."),
            prompt_id=prompt_id
        )

        asyncio.run(engine.sessions.send_message("when does the launch window open?", "m", prompt_id=prompt_id))

        assert "opens in May" in client.calls[0]["prompt"]
        assert engine.context_manager.current_prompt_id == prompt_id

    def test_unknown_prompt_id_starts_fresh(self, engine):
        message = asyncio.run(engine.sessions.send_message("hello", "m", prompt_id="prompt_gone"))
        assert message.content == "Hello, world"
        assert engine.context_manager.current_prompt_id != "prompt_gone"

    def test_web_search_skips_documents(self):
        client = FakeClient()
        search = FakeSearch()
        engine = _engine(client, search)
        upload = UploadedFile(name="notes.txt", media_type="text/plain", data=b"ollama notes from the meeting")
        asyncio.run(engine.sessions.send_message("what is ollama", "m", files=[upload], use_web_search=True))

        prompt = client.calls[0]["prompt"]
        assert search.queries == ["what is ollama"]
        assert "meeting" not in prompt
        assert "Ollama docs" in prompt


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_new_turn_drops_tokens_of_superseded_turn(self):
        async def scenario():
            client = GatedClient([["A1", "A2"], ["B1", "B2"]])
            engine = _engine(client)
            ctl = engine.sessions
            session = ctl.create_new_chat(model="m")

            turn_a = asyncio.create_task(ctl.send_message("first question", "m", session_id=session.id))
            await wait_until(lambda: len(client.gates) == 1)
            placeholder_a = session.messages[1]

            turn_b = asyncio.create_task(ctl.send_message("second question", "m", session_id=session.id))
            await wait_until(lambda: len(client.gates) == 2)

            # A's tokens arrive only after B has started
            client.gates[0].set()
            result_a = await turn_a
            client.gates[1].set()
            result_b = await turn_b
            return session, placeholder_a, result_a, result_b

        session, placeholder_a, result_a, result_b = asyncio.run(scenario())

        assert result_a is placeholder_a
        assert placeholder_a.content == ""
        assert placeholder_a.streaming is False
        assert result_b.content == "B1B2"
        assert [m.content for m in session.messages] == ["first question", "", "second question", "B1B2"]
        assert all(not m.streaming for m in session.messages)

    def test_stop_generation(self):
        async def scenario():
            client = GatedClient([["late", "tokens"]])
            engine = _engine(client)
            ctl = engine.sessions
            session = ctl.create_new_chat(model="m")

            turn = asyncio.create_task(ctl.send_message("question", "m", session_id=session.id))
            await wait_until(lambda: len(client.gates) == 1)
            placeholder = session.messages[1]
            assert ctl.is_generating(session.id)

            assert ctl.stop_generation(session.id) is True
            streaming_after_stop = placeholder.streaming

            client.gates[0].set()
            await turn
            return engine, ctl, session, placeholder, streaming_after_stop

        engine, ctl, session, placeholder, streaming_after_stop = asyncio.run(scenario())

        assert streaming_after_stop is False
        assert placeholder.content == ""
        assert not ctl.is_generating(session.id)
        assert list(engine.telemetry.turns.values())[-1].state == TurnState.CANCELLED

    def test_stop_closes_silent_stream(self):
        async def scenario():
            client = GatedClient([["never", "sent"]])
            engine = _engine(client)
            ctl = engine.sessions
            session = ctl.create_new_chat(model="m")

            turn = asyncio.create_task(ctl.send_message("question", "m", session_id=session.id))
            await wait_until(lambda: len(client.gates) == 1)
            ctl.stop_generation(session.id)
            # No gate is opened: the turn must settle without another token
            await wait_until(turn.done)
            return client, turn.result()

        client, placeholder = asyncio.run(scenario())

        assert client.closed == 1
        assert placeholder.content == ""
        assert placeholder.streaming is False

    def test_stop_while_awaiting_context(self):
        async def scenario():
            client = FakeClient()
            engine = _engine(client)
            gates = _gate_retrieval(engine)
            ctl = engine.sessions
            session = ctl.create_new_chat(model="m")

            turn = asyncio.create_task(ctl.send_message("question", "m", session_id=session.id))
            await wait_until(lambda: len(gates) == 1)
            state_when_stopped = ctl.get_handle(session.id).state
            assert ctl.stop_generation(session.id) is True

            gates[0].set()
            placeholder = await turn
            return engine, client, placeholder, state_when_stopped

        engine, client, placeholder, state_when_stopped = asyncio.run(scenario())

        assert state_when_stopped == TurnState.AWAITING_CONTEXT
        assert client.calls == []
        assert placeholder.content == ""
        assert placeholder.streaming is False
        assert list(engine.telemetry.turns.values())[-1].state == TurnState.CANCELLED

    def test_superseded_while_awaiting_context(self):
        async def scenario():
            client = FakeClient(tokens=["second answer"])
            engine = _engine(client)
            gates = _gate_retrieval(engine)
            ctl = engine.sessions
            session = ctl.create_new_chat(model="m")

            turn_a = asyncio.create_task(ctl.send_message("first question", "m", session_id=session.id))
            await wait_until(lambda: len(gates) == 1)
            placeholder_a = session.messages[1]

            turn_b = asyncio.create_task(ctl.send_message("second question", "m", session_id=session.id))
            await wait_until(lambda: len(gates) == 2)
            gates[1].set()
            result_b = await turn_b

            gates[0].set()
            result_a = await turn_a
            return engine, client, placeholder_a, result_a, result_b

        engine, client, placeholder_a, result_a, result_b = asyncio.run(scenario())

        assert result_a is placeholder_a
        assert placeholder_a.content == ""
        assert placeholder_a.streaming is False
        assert result_b.content == "second answer"
        assert len(client.calls) == 1
        assert "second question" in client.calls[0]["prompt"]
        states = [t.state for t in engine.telemetry.turns.values()]
        assert states == [TurnState.CANCELLED, TurnState.COMPLETED]

    def test_stop_without_generation(self, engine):
        assert engine.sessions.stop_generation() is False

    def test_delete_chat_cancels_turn(self):
        async def scenario():
            client = GatedClient([["never", "seen"]])
            engine = _engine(client)
            ctl = engine.sessions
            session = ctl.create_new_chat(model="m")
            turn = asyncio.create_task(ctl.send_message("question", "m", session_id=session.id))
            await wait_until(lambda: len(client.gates) == 1)
            placeholder = session.messages[1]

            assert ctl.delete_chat(session.id)
            client.gates[0].set()
            await turn
            return ctl, placeholder

        ctl, placeholder = asyncio.run(scenario())
        assert ctl.list_chats() == []
        assert placeholder.content == ""


# ---------------------------------------------------------------------------
# Edit / regenerate
# ---------------------------------------------------------------------------


class TestEditAndRegenerate:
    def _two_turns(self, engine):
        ctl = engine.sessions
        asyncio.run(ctl.send_message("first", "m"))
        asyncio.run(ctl.send_message("second", "m"))
        return ctl, ctl.get_chat()

    def test_edit_truncates_and_resends(self, engine):
        ctl, session = self._two_turns(engine)
        target = session.messages[2]

        message = asyncio.run(ctl.edit_and_resend_message(target.id, "second, edited", "m"))

        assert len(session.messages) == 4
        assert session.messages[0].content == "first"
        assert session.messages[2].content == "second, edited"
        assert session.messages[2].id != target.id
        assert session.messages[3] is message

    def test_edit_first_message(self, engine):
        ctl, session = self._two_turns(engine)
        asyncio.run(ctl.edit_and_resend_message(session.messages[0].id, "rewritten", "m"))
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.messages[0].content == "rewritten"

    def test_edit_assistant_message_is_noop(self, engine):
        ctl, session = self._two_turns(engine)
        before = [m.id for m in session.messages]
        assert asyncio.run(ctl.edit_and_resend_message(session.messages[1].id, "x", "m")) is None
        assert [m.id for m in session.messages] == before

    def test_edit_unknown_message_is_noop(self, engine):
        ctl, session = self._two_turns(engine)
        assert asyncio.run(ctl.edit_and_resend_message("nope", "x", "m")) is None
        assert len(session.messages) == 4

    def test_regenerate_replaces_last_answer(self):
        client = FakeClient(tokens=["answer"])
        engine = _engine(client)
        ctl = engine.sessions
        asyncio.run(ctl.send_message("question", "m"))
        session = ctl.get_chat()
        old_answer = session.messages[1]

        client.tokens = ["better answer"]
        message = asyncio.run(ctl.regenerate_last_message("m"))

        assert [m.content for m in session.messages] == ["question", "better answer"]
        assert message.id != old_answer.id

    def test_regenerate_needs_two_messages(self, engine):
        ctl = engine.sessions
        ctl.create_new_chat(model="m")
        assert asyncio.run(ctl.regenerate_last_message("m")) is None

    def test_regenerate_needs_user_before_last(self, engine):
        ctl = engine.sessions
        asyncio.run(ctl.send_message("question", "m"))
        session = ctl.get_chat()
        session.messages.reverse()
        assert asyncio.run(ctl.regenerate_last_message("m")) is None


# ---------------------------------------------------------------------------
# Titles and chat management
# ---------------------------------------------------------------------------


class TestTitles:
    def test_generate_title(self):
        assert generate_title("one two three four five six seven") == "one two three four five six..."
        assert generate_title("just three words") == "just three words"
        assert generate_title("one two three four five six") == "one two three four five six"

    def test_title_set_once(self, engine):
        ctl = engine.sessions
        asyncio.run(ctl.send_message("How do I bake sourdough bread at home quickly?", "m"))
        asyncio.run(ctl.send_message("And rye?", "m"))
        assert ctl.get_chat().title == "How do I bake sourdough bread..."

    def test_explicit_title_kept(self, engine):
        ctl = engine.sessions
        session = ctl.create_new_chat(model="m", title="Baking")
        asyncio.run(ctl.send_message("How do I bake bread?", "m"))
        assert session.title == "Baking"

    def test_default_title_replaced_by_first_message(self, engine):
        ctl = engine.sessions
        session = ctl.create_new_chat(model="m")
        assert session.title == "New Chat"
        asyncio.run(ctl.send_message("Plan a trip", "m"))
        assert session.title == "Plan a trip"


class TestChatManagement:
    def test_create_and_activate(self, engine):
        ctl = engine.sessions
        first = ctl.create_new_chat()
        second = ctl.create_new_chat()
        assert ctl.active_session_id == second.id
        assert ctl.set_active_chat(first.id)
        assert ctl.get_chat() is first
        assert not ctl.set_active_chat("missing")

    def test_delete_active_clears_selection(self, engine):
        ctl = engine.sessions
        session = ctl.create_new_chat()
        assert ctl.delete_chat(session.id)
        assert ctl.active_session_id is None
        assert not ctl.delete_chat(session.id)

    def test_clear_chat_keeps_session(self, engine):
        ctl = engine.sessions
        asyncio.run(ctl.send_message("hello", "m"))
        session = ctl.get_chat()
        assert ctl.clear_chat(session.id)
        assert session.messages == []
        assert ctl.get_chat(session.id) is session

    def test_rename(self, engine):
        ctl = engine.sessions
        session = ctl.create_new_chat()
        assert ctl.update_chat_title(session.id, "  Renamed  ")
        assert session.title == "Renamed"
        assert not ctl.update_chat_title(session.id, "   ")
        assert not ctl.update_chat_title("missing", "x")

    def test_list_most_recent_first(self, engine):
        ctl = engine.sessions
        older = ctl.create_new_chat()
        newer = ctl.create_new_chat()
        asyncio.run(ctl.send_message("bump", "m", session_id=older.id))
        assert [s.id for s in ctl.list_chats()] == [older.id, newer.id]

    def test_engine_reset(self, engine):
        asyncio.run(engine.sessions.send_message("hello", "m"))
        engine.reset()
        assert engine.sessions.list_chats() == []
        assert engine.store.list_sources() == []
        assert engine.context_manager.get_stats()["total_prompts"] == 0
