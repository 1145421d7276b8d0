"""Tests for message schemas and conversation helpers."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from memory.conversation import (
    append_message,
    delete_messages,
    filter_deleted_messages,
    update_message_part,
)
from schemas.messages import (
    AttachmentRef,
    ConversationMessage,
    MessagePart,
    PartKind,
    Speaker,
    ToolCall,
    ToolResponse,
)


class TestMessagePart:
    """Test part payload rules and wire conversion."""

    def test_exactly_one_payload(self):
        with pytest.raises(PydanticValidationError):
            MessagePart()
        with pytest.raises(PydanticValidationError):
            MessagePart(text="a", tool_call=ToolCall(name="x"))

    def test_last_update_defaults_to_timestamp(self):
        part = MessagePart(text="hi", timestamp=42)
        assert part.last_update == 42
        assert part.kind == PartKind.TEXT

    def test_to_wire_omits_bookkeeping(self):
        assert MessagePart(text="hi", hide=True).to_wire() == {"text": "hi"}
        attachment = MessagePart(attachment=AttachmentRef(
            mime_type="image/png", file_uri="https://x/files/a", preview="data:"
        ))
        assert attachment.to_wire() == {"file_data": {"mime_type": "image/png", "file_uri": "https://x/files/a"}}

    def test_tool_parts_to_wire(self):
        call = MessagePart(tool_call=ToolCall(name="get_memory", args={"memoryKey": "k"}))
        response = MessagePart(tool_response=ToolResponse(name="get_memory", result={"success": True}))

        assert call.to_wire() == {"functionCall": {"name": "get_memory", "args": {"memoryKey": "k"}}}
        assert response.to_wire() == {
            "functionResponse": {"name": "get_memory", "response": {"result": {"success": True}}}
        }

    def test_from_wire_code_execution(self):
        code = MessagePart.from_wire({"executableCode": {"language": "PYTHON", "code": "print(1)"}})
        output = MessagePart.from_wire({"codeExecutionResult": {"output": "1"}})

        assert code.text == "```python\nprint(1)\n```"
        assert output.text == "```\n1\n```"

    def test_from_wire_unknown_part(self):
        assert MessagePart.from_wire({"inlineData": {"data": "..."}}) is None

    def test_from_wire_camel_case_file_data(self):
        part = MessagePart.from_wire({"fileData": {"mimeType": "application/pdf", "fileUri": "https://x/files/b"}})
        assert part.attachment.file_uri == "https://x/files/b"
        assert part.attachment.mime_type == "application/pdf"


class TestConversationMessage:
    """Test message construction and accessors."""

    def test_requires_a_part(self):
        with pytest.raises(PydanticValidationError):
            ConversationMessage(speaker=Speaker.USER, parts=[])

    def test_visible_text_skips_thoughts_and_hidden(self):
        message = ConversationMessage(
            speaker=Speaker.MODEL,
            parts=[
                MessagePart(text="hmm", thought=True),
                MessagePart(text="secret", hide=True),
                MessagePart(text="Hello"),
            ]
        )
        assert message.visible_text() == "Hello"

    def test_tool_calls(self):
        message = ConversationMessage(
            speaker=Speaker.MODEL,
            parts=[MessagePart(text="Saving"), MessagePart(tool_call=ToolCall(name="create_memory"))]
        )
        assert [call.name for call in message.tool_calls()] == ["create_memory"]


class TestConversationHelpers:
    """Test history mutation helpers."""

    def setup_method(self):
        """Set up test fixtures."""
        self.history = [
            ConversationMessage.user_text("first", timestamp=1),
            ConversationMessage.user_text("second", timestamp=2),
        ]

    def test_append_stamps_parts(self):
        message = ConversationMessage(
            speaker=Speaker.USER,
            parts=[MessagePart(text="third", timestamp=999)],
            timestamp=3
        )
        history = append_message(self.history, message)

        assert len(history) == 3
        assert len(self.history) == 2
        assert history[-1].parts[0].timestamp == 3
        assert history[-1].parts[0].last_update == 3

    def test_delete_is_soft(self):
        history = delete_messages(self.history, [1])

        assert history[0].deleted is True
        assert history[1].deleted is False
        assert filter_deleted_messages(history) == [history[1]]

    def test_update_part_keeps_identity(self):
        part = self.history[1].parts[0]
        history = update_message_part(self.history, part.uuid, "edited", now=50)
        edited = history[1].parts[0]

        assert edited.text == "edited"
        assert edited.uuid == part.uuid
        assert edited.timestamp == part.timestamp
        assert edited.last_update == 50
        assert history[0] is self.history[0]

    def test_update_unknown_part(self):
        with pytest.raises(KeyError):
            update_message_part(self.history, "missing", "x")
