"""Data model shared by the activation engine and the context builder."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

DEFAULT_POSITION = "after_char"
DEFAULT_INSERTION_ORDER = 100


class ActivationType(Enum):
    """How a knowledge entry is triggered."""
    ALWAYS = "always"
    KEYWORD = "keyword"
    REGEX = "regex"
    VECTOR = "vector"


class ActivatedBy(Enum):
    """Why an entry ended up in the activated list."""
    KEYWORD = "keyword"
    REGEX = "regex"
    VECTOR = "vector"
    RECURSIVE = "recursive"
    ALWAYS = "always"


class SelectiveLogic(Enum):
    """How primary and secondary keywords combine."""
    AND_ANY = "AND_ANY"
    AND_ALL = "AND_ALL"
    NOT_ALL = "NOT_ALL"


StringList = Union[List[str], str, None]


def decode_string_list(value: StringList) -> List[str]:
    """
    Decode a keyword or id list.

    Lists pass through; strings are treated as the persisted JSON form.

    Raises:
        ValueError: if the JSON is malformed or does not hold a list of strings
    """
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"malformed JSON list: {e}") from e
    else:
        decoded = value
    if not isinstance(decoded, list) or not all(isinstance(v, str) for v in decoded):
        raise ValueError(f"expected a list of strings, got {decoded!r}")
    return list(decoded)


@dataclass
class KnowledgeEntry:
    """A lorebook / world-info snippet that may be inserted into the prompt."""
    id: str
    name: str
    content: str
    keywords: StringList = None
    secondary_keywords: StringList = None
    activation_type: ActivationType = ActivationType.KEYWORD
    position: Optional[str] = DEFAULT_POSITION
    insertion_order: Optional[int] = DEFAULT_INSERTION_ORDER
    enabled: bool = True
    recursive: bool = False
    cascade_trigger: StringList = None
    recursive_level: int = 0
    sticky: int = 0
    cooldown: int = 0
    delay: int = 0
    token_budget: Optional[int] = None
    selective_logic: SelectiveLogic = SelectiveLogic.AND_ANY
    use_regex: bool = False
    regex_pattern: Optional[str] = None
    min_activations: int = 0
    insertion_template: Optional[str] = None
    embedding: Optional[Sequence[float]] = None
    vector_threshold: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.activation_type, str):
            self.activation_type = ActivationType(self.activation_type)
        if isinstance(self.selective_logic, str):
            self.selective_logic = SelectiveLogic(self.selective_logic)

    @property
    def resolved_position(self) -> str:
        return self.position or DEFAULT_POSITION

    @property
    def resolved_order(self) -> int:
        if self.insertion_order is None:
            return DEFAULT_INSERTION_ORDER
        return self.insertion_order

    def primary_keywords(self) -> List[str]:
        return decode_string_list(self.keywords)

    def secondary_keyword_list(self) -> List[str]:
        return decode_string_list(self.secondary_keywords)

    def cascade_targets(self) -> List[str]:
        return decode_string_list(self.cascade_trigger)

    def render(self) -> str:
        """Render the text inserted into the prompt for this entry."""
        if self.insertion_template:
            return (self.insertion_template
                    .replace("{name}", self.name)
                    .replace("{content}", self.content))
        return f"[{self.name}]\n{self.content}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KnowledgeEntry':
        """Create an entry from a plain mapping (e.g. a YAML scenario file)."""
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ActivationRecord:
    """One activation event of an entry in a chat."""
    entry_id: str
    chat_id: str
    activated_at: datetime
    expires_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    message_count: int = 0


@dataclass
class ActivatedEntry:
    """An entry selected for the current build."""
    entry: KnowledgeEntry
    position: str
    order: int
    activated_by: ActivatedBy
    cascade_level: int = 0
    estimated_tokens: Optional[int] = None

    @property
    def id(self) -> str:
        return self.entry.id


@dataclass
class ChatMessage:
    """A single message of the chat history."""
    role: str
    content: str
    timestamp: Optional[datetime] = None


@dataclass
class Character:
    """The parts of a character card used to build context."""
    name: str = "Character"
    description: str = ""
    personality: str = ""
    scenario: str = ""
    mes_example: str = ""
    example_messages: Union[List[Dict[str, str]], str, None] = None
    system_prompt: str = ""
    jailbreak_prompt: str = ""
    author_note: str = ""
    post_history_instructions: str = ""
    example_separator: str = "###"
    chat_start: str = "<START>"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Character':
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ActivationOptions:
    """Per-call options of the activation engine."""
    enable_recursive: bool = True
    enable_vector: bool = False
    max_recursion_depth: int = 3
    vector_threshold: float = 0.7
    max_activated_entries: int = 15
    max_total_tokens: int = 20000
    model: Optional[str] = None
    preloaded_entries: Optional[List[KnowledgeEntry]] = None


@dataclass
class ContextBuildOptions:
    """Per-call options of the context builder."""
    max_context_tokens: int
    reserve_tokens: int
    model: Optional[str] = None
    template_name: str = "default"
    enable_summary: bool = False
    summary_timeout: Optional[float] = None

    @property
    def available_tokens(self) -> int:
        return max(0, self.max_context_tokens - self.reserve_tokens)


@dataclass
class ContextComponents:
    """Intermediate sections of one build plus usage statistics."""
    character_core: str
    world_info: Dict[str, str]
    history: str
    examples: str
    stats: Dict[str, Any] = field(default_factory=dict)
