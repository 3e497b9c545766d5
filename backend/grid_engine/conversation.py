"""
Conversation Module

Keeps the chat turns of the spreadsheet assistant. Prior user/model turns are
replayed to the gateway as context; system turns only record model fallbacks
for the user and are never sent to a model.
"""

import base64
import itertools
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Callable, Iterable

from .data_structures import ChatRowUpdate, ChatUpdate, Grid, MergeReport, normalize_row, parse_citation
from .gemini_client import AiNotConfiguredError, get_client
from .prompts import PROMPT_METADATA, format_chat_instruction

logger = logging.getLogger(__name__)

ERROR_TEXT = "Sorry, I encountered an error. All models may be busy."
INVALID_UPDATE_NOTE = "\n\n⚠️ *I tried to update the data, but the JSON format was invalid.*"
REPLACED_NOTE = "\n\n✅ *I have replaced the spreadsheet data.*"

# Matches ```json, ```json_update or a bare ``` fence
_UPDATE_BLOCK = re.compile(r"```(?:json_update|json)?\s*([\s\S]*?)\s*```")

TEXT_FILE_SUFFIXES = ('.md', '.csv', '.json')

DataUpdateCallback = Callable[[ChatUpdate], MergeReport]


@dataclass
class ChatAttachment:
    """A file attached to the current chat message"""
    name: str
    content: bytes
    mime_type: str = ""

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/") or self.name.lower().endswith(TEXT_FILE_SUFFIXES)

    def to_part(self) -> Dict[str, Any]:
        if self.is_text:
            text = self.content.decode('utf-8', errors='replace')
            return {"text": f"\n[FILE CONTENT: {self.name}]\n{text}\n[END FILE]\n"}
        return {
            "inline_data": {
                "mime_type": self.mime_type or "application/octet-stream",
                "data": base64.b64encode(self.content).decode('ascii'),
            }
        }


@dataclass
class ChatTurn:
    id: str
    role: str  # "user", "model" or "system"
    text: str
    attachments: List[Dict[str, str]] = field(default_factory=list)
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "attachments": list(self.attachments),
            "is_error": self.is_error,
        }


def parse_chat_update(payload: str) -> Optional[ChatUpdate]:
    """Decode the JSON inside an update block

    Returns:
        A structured or replacement update, or None when the JSON is neither

    Raises:
        ValueError: if the payload is not valid JSON or a replacement row is not an array
    """
    parsed = json.loads(payload)

    if isinstance(parsed, dict) and isinstance(parsed.get("rows"), list):
        rows = []
        for raw in parsed["rows"]:
            if not isinstance(raw, dict) or not isinstance(raw.get("data"), list):
                continue
            index = raw.get("index")
            if isinstance(index, bool) or not isinstance(index, int):
                index = None
            rows.append(ChatRowUpdate(
                data=normalize_row(raw["data"]),
                index=index,
                citation=parse_citation(raw.get("citation")),
            ))
        return ChatUpdate(rows=rows)

    if isinstance(parsed, list):
        if not all(isinstance(row, list) for row in parsed):
            raise ValueError("Replacement grid rows must be arrays")
        return ChatUpdate(replacement=[normalize_row(row) for row in parsed])

    return None


class ConversationSession:
    """Ordered chat turns plus the logic to send the next one"""

    def __init__(self, client=None):
        self.client = client
        self.turns: List[ChatTurn] = []
        self.last_model: Optional[str] = None
        self._ids = itertools.count(1)

    def _append(self, role: str, text: str, attachments: Optional[List[Dict[str, str]]] = None,
                is_error: bool = False) -> ChatTurn:
        turn = ChatTurn(
            id=f"{int(time.time() * 1000)}-{next(self._ids)}",
            role=role,
            text=text,
            attachments=attachments or [],
            is_error=is_error,
        )
        self.turns.append(turn)
        return turn

    def clear(self):
        self.turns = []

    def history_contents(self) -> List[Dict[str, Any]]:
        """Prior turns as gateway contents: text only, system turns left out"""
        return [
            {"role": turn.role, "parts": [{"text": turn.text}]}
            for turn in self.turns
            if turn.role != "system"
        ]

    def _on_retry(self, failed_model: str, next_model: str):
        self._append("system", f"⚠️ Model {failed_model} failed. Switching to {next_model}...")

    def _apply_update_block(self, text: str, on_data_update: Optional[DataUpdateCallback]) -> str:
        match = _UPDATE_BLOCK.search(text)
        if not match or not match.group(1):
            return text

        try:
            update = parse_chat_update(match.group(1))
        except ValueError as e:
            logger.warning(f"⚠️ Chat: failed to parse JSON update: {e}")
            return text + INVALID_UPDATE_NOTE

        if update is None or on_data_update is None:
            return text

        try:
            report = on_data_update(update)
        except ValueError as e:
            logger.warning(f"⚠️ Chat: update rejected: {e}")
            return text + INVALID_UPDATE_NOTE

        if report.replaced:
            confirmation = REPLACED_NOTE
        else:
            actions = []
            if report.updated:
                actions.append(f"updated {report.updated}")
            if report.added:
                actions.append(f"added {report.added}")
            if actions:
                confirmation = f"\n\n✅ *Successfully {' and '.join(actions)} row(s).*"
            else:
                confirmation = "\n\n*No rows were changed.*"
        return text.replace(match.group(0), confirmation, 1)

    async def send(self, prompt: str, grid: Grid, start_model: str, available_models: List[str],
                   attachments: Iterable[ChatAttachment] = (),
                   on_data_update: Optional[DataUpdateCallback] = None) -> Optional[ChatTurn]:
        """Send a message and record the reply

        The user turn is recorded before any network activity. Failures end in
        an error-flagged model turn instead of an exception.

        Returns:
            The model turn, or None when there was nothing to send
        """
        attachments = list(attachments)
        if not prompt and not attachments:
            return None

        history = self.history_contents()
        self._append("user", prompt, [{"name": a.name, "type": a.mime_type} for a in attachments])

        current_parts = [a.to_part() for a in attachments]
        if prompt:
            current_parts.append({"text": prompt})
        contents = history + [{"role": "user", "parts": current_parts}]

        try:
            client = self.client or get_client()
            if client is None:
                raise AiNotConfiguredError()
            result = await client.generate_with_fallback(
                start_model,
                available_models,
                format_chat_instruction(grid),
                contents,
                self._on_retry,
                {"temperature": PROMPT_METADATA["chat"]["temperature"]},
            )
        except Exception as e:
            logger.error(f"❌ Gemini API Error: {e}")
            return self._append("model", ERROR_TEXT, is_error=True)

        self.last_model = result.final_model
        reply = self._apply_update_block(result.text, on_data_update)
        return self._append("model", reply)
