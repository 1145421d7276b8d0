"""Conversion of conversation history into completion request contents."""

import logging
from typing import List, Dict, Any, Optional

from agents.personas import PersonaRegistry
from attachments.tracker import AttachmentTracker
from attachments.upload_service import FileUploadService
from llm.errors import ValidationError, ApiError, ErrorCategory
from schemas.messages import ConversationMessage, MessagePart, Speaker

logger = logging.getLogger(__name__)


class ContentPreparer:
    """
    Prepares history for the completion service.

    The output is a list of wire turns ({role, parts}) without any local
    bookkeeping: deleted messages, hidden parts and thoughts are gone, local
    attachments are uploaded, and turns of other personas are presented to
    the responding persona as user turns.
    """

    def __init__(
        self,
        personas: PersonaRegistry,
        tracker: Optional[AttachmentTracker] = None,
        uploader: Optional[FileUploadService] = None
    ):
        """
        Initialize content preparer.

        Args:
            personas: Persona registry, for display names
            tracker: Attachment tracker used to expire stale handles
            uploader: Upload collaborator for local attachments
        """
        self.personas = personas
        self.tracker = tracker
        self.uploader = uploader

    def prepare(
        self,
        history: List[ConversationMessage],
        responding_persona: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Prepare wire contents for a request.

        Args:
            history: Conversation messages in conversational order
            responding_persona: Key of the persona the request is for

        Returns:
            Non-empty list of {role, parts} turns

        Raises:
            ValidationError: If history is malformed or nothing can be sent
            ApiError: If a local attachment fails to upload
        """
        if history is None or not isinstance(history, list):
            raise ValidationError("Invalid or missing contents parameter", details={"parameter": "contents"})
        for message in history:
            if not isinstance(message, ConversationMessage):
                raise ValidationError(
                    "History must contain conversation messages",
                    details={"parameter": "contents", "type": type(message).__name__}
                )

        messages = [m for m in history if not m.deleted]
        if self.tracker:
            messages = self.tracker.remove_expired_from_messages(messages)

        persona = self.personas.get(responding_persona) if responding_persona else None
        persona_name = persona.name if persona else None

        contents = []
        for message in messages:
            parts = [
                self._convert_part(part) for part in message.parts
                if not part.thought and not part.hide
            ]
            if not parts:
                continue
            contents.append({"role": self._wire_role(message, persona_name), "parts": parts})

        if not contents:
            contents = self._reinstate_user_turn(messages)

        return contents

    @staticmethod
    def _wire_role(message: ConversationMessage, persona_name: Optional[str]) -> str:
        # Other personas' turns read as user input to the responding persona
        if persona_name and message.persona_name and message.persona_name != persona_name:
            return Speaker.USER.value
        return message.speaker.value

    def _convert_part(self, part: MessagePart) -> Dict[str, Any]:
        attachment = part.attachment
        if attachment is None or attachment.file_uri:
            return part.to_wire()

        if not attachment.local_path:
            raise ValidationError(
                "Attachment has neither a remote handle nor a local file",
                details={"uuid": part.uuid}
            )
        if self.uploader is None:
            raise ApiError(
                "Failed to upload file: no upload service configured",
                category=ErrorCategory.FILE_UPLOAD,
                details={"mimeType": attachment.mime_type}
            )

        file_uri = self.uploader.upload_file(attachment.local_path, attachment.mime_type)
        return {"file_data": {"mime_type": attachment.mime_type, "file_uri": file_uri}}

    def _reinstate_user_turn(self, messages: List[ConversationMessage]) -> List[Dict[str, Any]]:
        """Fall back to the most recent non-thought user part, hidden or not."""
        for message in reversed(messages):
            if message.speaker != Speaker.USER:
                continue
            for part in reversed(message.parts):
                if part.thought:
                    continue
                logger.warning("All parts were filtered out; reinstating the latest user part")
                return [{"role": Speaker.USER.value, "parts": [self._convert_part(part)]}]

        raise ValidationError(
            "No conversation contents available. User message must be added to "
            "conversation before making API request.",
            details={"parameter": "contents"}
        )
