"""Conversation message schemas and their Gemini wire format."""

import time
import uuid
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, model_validator


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_part_uuid() -> str:
    """Stable identifier for a message part."""
    return str(uuid.uuid4())


class Speaker(str, Enum):
    """Who authored a message, as seen by the completion service."""
    USER = "user"
    MODEL = "model"


class PartKind(str, Enum):
    """Payload carried by a message part."""
    TEXT = "text"
    ATTACHMENT = "attachment"
    TOOL_CALL = "tool_call"
    TOOL_RESPONSE = "tool_response"


class AttachmentRef(BaseModel):
    """Reference to an attached file, local or already uploaded."""
    mime_type: str
    file_uri: Optional[str] = Field(None, description="Remote upload handle")
    local_path: Optional[str] = Field(None, description="Local file not yet uploaded")
    preview: Optional[str] = Field(None, description="Local preview payload, never transmitted")


class ToolCall(BaseModel):
    """Function call issued by the model."""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResponse(BaseModel):
    """Structured outcome of a function call."""
    name: str
    result: Any = None


class MessagePart(BaseModel):
    """One part of a message. Exactly one payload field is set."""
    uuid: str = Field(default_factory=generate_part_uuid)
    timestamp: int = Field(default_factory=now_ms)
    last_update: Optional[int] = None

    text: Optional[str] = None
    thought: bool = False
    hide: bool = False
    attachment: Optional[AttachmentRef] = None
    tool_call: Optional[ToolCall] = None
    tool_response: Optional[ToolResponse] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "MessagePart":
        payloads = [
            self.text is not None,
            self.attachment is not None,
            self.tool_call is not None,
            self.tool_response is not None,
        ]
        if sum(payloads) != 1:
            raise ValueError("A message part must carry exactly one payload")
        if self.last_update is None:
            self.last_update = self.timestamp
        return self

    @property
    def kind(self) -> PartKind:
        if self.text is not None:
            return PartKind.TEXT
        if self.attachment is not None:
            return PartKind.ATTACHMENT
        if self.tool_call is not None:
            return PartKind.TOOL_CALL
        return PartKind.TOOL_RESPONSE

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> Optional["MessagePart"]:
        """
        Build a part from a Gemini response part.

        Args:
            data: Raw part dictionary from the completion service

        Returns:
            MessagePart, or None for part types the conversation does not keep
        """
        if "text" in data:
            return cls(text=data["text"], thought=bool(data.get("thought", False)))

        if "functionCall" in data:
            call = data["functionCall"] or {}
            return cls(tool_call=ToolCall(name=call.get("name", ""), args=call.get("args") or {}))

        if "functionResponse" in data:
            response = data["functionResponse"] or {}
            result = (response.get("response") or {}).get("result")
            return cls(tool_response=ToolResponse(name=response.get("name", ""), result=result))

        file_data = data.get("file_data") or data.get("fileData")
        if file_data:
            return cls(attachment=AttachmentRef(
                mime_type=file_data.get("mime_type") or file_data.get("mimeType", ""),
                file_uri=file_data.get("file_uri") or file_data.get("fileUri")
            ))

        if "executableCode" in data:
            code = data["executableCode"] or {}
            language = (code.get("language") or "").lower()
            if language == "language_unspecified":
                language = ""
            return cls(text=f"```{language}\n{code.get('code', '')}\n```")

        if "codeExecutionResult" in data:
            output = (data["codeExecutionResult"] or {}).get("output", "")
            return cls(text=f"```\n{output}\n```")

        return None

    def to_wire(self) -> Dict[str, Any]:
        """Gemini representation without bookkeeping fields."""
        if self.text is not None:
            return {"text": self.text}
        if self.attachment is not None:
            return {
                "file_data": {
                    "mime_type": self.attachment.mime_type,
                    "file_uri": self.attachment.file_uri,
                }
            }
        if self.tool_call is not None:
            return {"functionCall": {"name": self.tool_call.name, "args": self.tool_call.args}}
        return {
            "functionResponse": {
                "name": self.tool_response.name,
                "response": {"result": self.tool_response.result},
            }
        }


class ConversationMessage(BaseModel):
    """A single turn in a conversation."""
    speaker: Speaker
    persona_name: Optional[str] = None
    parts: List[MessagePart] = Field(min_length=1)
    timestamp: int = Field(default_factory=now_ms)
    deleted: bool = False

    @classmethod
    def user_text(cls, text: str, timestamp: Optional[int] = None) -> "ConversationMessage":
        stamp = timestamp if timestamp is not None else now_ms()
        return cls(
            speaker=Speaker.USER,
            parts=[MessagePart(text=text, timestamp=stamp)],
            timestamp=stamp
        )

    def visible_text(self) -> str:
        """Concatenated text of parts that are neither thoughts nor hidden."""
        return "".join(
            part.text for part in self.parts
            if part.text is not None and not part.thought and not part.hide
        )

    def tool_calls(self) -> List[ToolCall]:
        return [part.tool_call for part in self.parts if part.tool_call is not None]
