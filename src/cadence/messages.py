"""
Conversation data model shared by the agent loop and the AI service adapters.

Content blocks are a closed tagged union keyed by ``type``. Messages and
blocks are frozen once created; the history store hands out copies.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union


class Role(Enum):
    """Conversation roles"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: ClassVar[str] = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ImageBlock:
    """Image attached to a user turn (URL, path or base64 data)"""
    source: str
    type: ClassVar[str] = "image"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "source": self.source}


@dataclass(frozen=True)
class FileBlock:
    """File reference attached to a user turn"""
    path: str
    content: Optional[str] = None
    type: ClassVar[str] = "file"

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "path": self.path}
        if self.content is not None:
            data["content"] = self.content
        return data


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the model"""
    id: str
    name: str
    input: Dict[str, Any]
    type: ClassVar[str] = "tool_use"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ToolResultBlock:
    """Output of a tool invocation, sent back on a user turn"""
    tool_use_id: str
    output: Any
    is_error: bool = False
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "tool_use_id": self.tool_use_id,
            "content": self.output,
            "is_error": self.is_error,
        }


ContentBlock = Union[TextBlock, ImageBlock, FileBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class ConversationMessage:
    """
    One entry of the API-facing history.

    ``content`` is either a plain string or a tuple of content blocks; lists
    passed in are frozen into tuples.
    """
    role: Role
    content: Union[str, Tuple[ContentBlock, ...]]

    def __post_init__(self):
        if isinstance(self.role, str):
            object.__setattr__(self, "role", Role(self.role))
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def blocks(self) -> Tuple[ContentBlock, ...]:
        """Content as blocks (a string becomes a single TextBlock)"""
        if isinstance(self.content, str):
            return (TextBlock(self.content),)
        return self.content

    def tool_uses(self) -> List[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    def to_dict(self) -> Dict[str, Any]:
        """Provider-neutral dict form (role + content blocks)"""
        if isinstance(self.content, str):
            return {"role": self.role.value, "content": self.content}
        return {"role": self.role.value, "content": [b.to_dict() for b in self.content]}

    @classmethod
    def user(cls, content: Union[str, List[ContentBlock]]) -> "ConversationMessage":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: Union[str, List[ContentBlock]]) -> "ConversationMessage":
        return cls(Role.ASSISTANT, content)


class DisplayKind(Enum):
    """Kinds of UI-facing messages"""
    ASK = "ask"
    SAY = "say"
    TOOL = "tool"


@dataclass
class DisplayMessage:
    """
    One entry of the UI-facing history.

    ``timestamp`` is epoch milliseconds; ``history_index`` links the entry to
    the API history length at the time it was recorded. Both are filled in
    by the history store when left as None.
    """
    kind: DisplayKind
    content: List[ContentBlock] = field(default_factory=list)
    timestamp: Optional[int] = None
    history_index: Optional[int] = None
    tool_name: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_output: Any = None


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ToolUseDelta:
    """
    Incremental piece of a streamed tool invocation.

    The first delta for an id carries the name; later ones carry fragments of
    the raw JSON arguments in ``input``. A delta for a known id with no
    ``input`` marks the invocation complete.
    """
    id: Optional[str] = None
    name: Optional[str] = None
    input: Optional[str] = None


@dataclass(frozen=True)
class StreamChunk:
    """One unit yielded by an AIService stream"""
    content: Tuple[ContentBlock, ...] = ()
    tool_use_delta: Optional[ToolUseDelta] = None
    reasoning: Optional[str] = None
    partial: bool = False
    is_last: bool = False

    def __post_init__(self):
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))


def estimate_tokens(messages: List[ConversationMessage]) -> int:
    """Rough token estimate: four characters per token of the JSON form"""
    payload = json.dumps([m.to_dict() for m in messages], default=str)
    return len(payload) // 4
