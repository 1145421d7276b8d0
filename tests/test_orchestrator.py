"""End-to-end tests for ChatOrchestrator with a fake completion client."""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

from config.settings import Settings
from llm.errors import ApiError, ErrorCategory
from orchestrator import ChatOrchestrator
from schemas.messages import Speaker
from schemas.tasks import TaskStatus
from fakes import FakeLLMClient, call_response, text_response


class TestChatOrchestrator:
    """Test a user turn from submission to persisted replies."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = str(Path(self.tmpdir) / "test.db")
        self.delivered = []

    def make_orchestrator(self, responses, **overrides):
        settings = Settings(api_key="test-key", db_path=self.db_path, conversation_id="conv-1", **overrides)
        client = FakeLLMClient(responses)
        orchestrator = ChatOrchestrator(
            settings=settings,
            llm_client=client,
            on_message=self.delivered.append
        )
        return orchestrator, client

    def test_default_persona_answers(self):
        """Test that an unaddressed turn goes to the default persona."""
        orchestrator, client = self.make_orchestrator([text_response("$$$ Adrien BEGIN $$$\nHi there!")])

        outcomes = asyncio.run(orchestrator.send("Hello"))

        assert [o.status for o in outcomes] == [TaskStatus.COMPLETED]
        assert [m.speaker for m in orchestrator.history] == [Speaker.USER, Speaker.MODEL]
        assert orchestrator.history[1].persona_name == "Adrien"
        assert orchestrator.history[1].visible_text() == "Hi there!"
        assert self.delivered == [orchestrator.history[1]]

        request = client.requests[0]
        assert request["contents"] == [{"role": "user", "parts": [{"text": "Hello"}]}]
        assert "tools" in request

        assert orchestrator.store.load_messages("conv-1") == orchestrator.history

    def test_mention_addresses_persona(self):
        orchestrator, _ = self.make_orchestrator([text_response("Searching done.")])

        asyncio.run(orchestrator.send("@Belinda what is new today?"))

        assert orchestrator.history[-1].persona_name == "Belinda"

    def test_reply_mention_fans_out(self):
        """Test that a persona mentioning another schedules it."""
        orchestrator, client = self.make_orchestrator([
            text_response("I will ask @Charlie to draft it."),
            text_response("Draft ready."),
        ])

        asyncio.run(orchestrator.send("Plan my week"))

        assert [m.persona_name for m in orchestrator.history] == [None, "Adrien", "Charlie"]
        # The editor sees the general persona's turn as user input
        editor_contents = client.requests[1]["contents"]
        assert editor_contents[-1]["role"] == "user"
        assert editor_contents[-1]["parts"][0]["text"] == "I will ask @Charlie to draft it."

    def test_tool_call_persists_memory(self):
        orchestrator, _ = self.make_orchestrator([
            call_response("create_memory", {"memoryValue": "User plans weekly on Mondays"}),
            text_response("Noted."),
        ])

        asyncio.run(orchestrator.send("Remember that I plan on Mondays"))

        assert list(orchestrator.store.get_all_memories().values()) == ["User plans weekly on Mondays"]
        assert orchestrator.history[-1].visible_text() == "Noted."

    def test_failure_is_reported(self):
        error = ApiError("API request failed: boom", category=ErrorCategory.RESPONSE_ERROR, status=500)
        orchestrator, _ = self.make_orchestrator([error])

        outcomes = asyncio.run(orchestrator.send("Hello"))

        assert outcomes[0].status == TaskStatus.FAILED
        assert orchestrator.errors == ["Adrien: Service error: API request failed: boom (Status: 500)"]
        assert len(orchestrator.history) == 1

    def test_follow_up_questions_on_idle(self):
        orchestrator, client = self.make_orchestrator(
            [text_response("Tea is an infusion."), text_response('["Which tea is best?"]')],
            follow_up_enabled=True
        )

        asyncio.run(orchestrator.send("Tell me about tea"))

        assert orchestrator.follow_up_questions == ["Which tea is best?"]
        assert client.models[-1] == "gemini-2.5-flash-lite"

    def test_edit_and_delete_persist(self):
        orchestrator, _ = self.make_orchestrator([text_response("Hi!")])
        asyncio.run(orchestrator.send("Hello"))

        user_part = orchestrator.history[0].parts[0]
        orchestrator.edit_part(user_part.uuid, "Hello again")
        orchestrator.delete_message(orchestrator.history[1].timestamp)

        stored = orchestrator.store.load_messages("conv-1")
        assert stored[0].parts[0].text == "Hello again"
        assert stored[1].deleted is True
        assert [m.timestamp for m in orchestrator.request_view()] == [orchestrator.history[0].timestamp]

    def test_resumes_existing_conversation(self):
        orchestrator, _ = self.make_orchestrator([text_response("Hi!")])
        asyncio.run(orchestrator.send("Hello"))

        resumed, _ = self.make_orchestrator([])

        assert resumed.conversation_id == "conv-1"
        assert resumed.history == orchestrator.history

    @patch('requests.post')
    def test_attachment_is_uploaded_once(self, mock_post):
        """Test that a tool round and a later turn reuse the stored handle."""
        uploads = []

        def fake_post(url, headers=None, json=None, data=None, timeout=None):
            response = Mock()
            response.status_code = 200
            response.text = ""
            if headers.get("X-Goog-Upload-Command") == "start":
                response.headers = {"x-goog-upload-url": f"https://upload.example.com/session?id={len(uploads)}"}
            else:
                uploads.append(url)
                response.json.return_value = {
                    "file": {"uri": f"https://generativelanguage.googleapis.com/v1beta/files/f{len(uploads)}"}
                }
            return response

        mock_post.side_effect = fake_post
        photo = Path(self.tmpdir) / "photo.png"
        photo.write_bytes(b"\x89PNG\r\n")
        orchestrator, client = self.make_orchestrator([
            call_response("create_memory", {"memoryValue": "User has a cat"}),
            text_response("Cute cat!"),
            text_response("A photo of your cat."),
        ])

        async def scenario():
            await orchestrator.send("Look at my cat", attachments=[str(photo)])
            await orchestrator.send("What did I send?")

        asyncio.run(scenario())

        assert len(uploads) == 1
        stored = orchestrator.store.load_messages("conv-1")[0].parts[1].attachment
        assert stored.file_uri == "https://generativelanguage.googleapis.com/v1beta/files/f1"
        assert stored.local_path is None

        assert len(client.requests) == 3
        for request in client.requests:
            handles = [
                part["file_data"]["file_uri"]
                for turn in request["contents"] for part in turn["parts"] if "file_data" in part
            ]
            assert handles == ["https://generativelanguage.googleapis.com/v1beta/files/f1"]

    def test_compression_checked_on_every_dispatch(self):
        """Test that fan-out tasks check compression like user-triggered ones."""
        orchestrator, _ = self.make_orchestrator([
            text_response("@Belinda please help"),
            text_response("Here is what I found."),
        ])
        orchestrator.compression.maybe_compress = Mock(return_value=None)

        asyncio.run(orchestrator.send("Find me a recipe"))

        calls = orchestrator.compression.maybe_compress.call_args_list
        assert len(calls) == 2
        assert [len(call.args[1]) for call in calls] == [1, 2]
        assert all(call.args[0] == "conv-1" for call in calls)
