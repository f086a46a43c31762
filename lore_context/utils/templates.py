"""Built-in prompt templates and the Jinja2 renderer that fills them."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from jinja2 import DictLoader, Environment, TemplateNotFound, TemplateSyntaxError

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "default"

BUILTIN_TEMPLATES: Dict[str, str] = {
    "default": """{% if jailbreak %}{{ jailbreak }}

{% endif %}{% if system_prompt %}{{ system_prompt }}

{% endif %}{% if wi_before %}{{ wi_before }}

{% endif %}{{ description }}
{% if personality %}
Personality: {{ personality }}
{% endif %}{% if scenario %}
Scenario: {{ scenario }}
{% endif %}
{% if mes_examples %}{{ example_separator }}
{{ mes_examples }}
{{ example_separator }}
{% endif %}
{{ chat_start }}
{{ chat_history }}

{% if wi_after %}{{ wi_after }}
{% endif %}{% if author_note %}
[Author's Note: {{ author_note }}]
{% endif %}{% if post_history_instructions %}
{{ post_history_instructions }}
{% endif %}""",

    "minimal": """{{ character_core }}

{{ chat_history }}

{{ author_note }}""",

    "roleplay_optimized": """{{ system_prompt }}

=== CHARACTER ===
{{ description }}
{{ personality }}

{% if wi_before %}=== WORLD INFO ===
{{ wi_before }}

{% endif %}=== SCENARIO ===
{{ scenario }}

{{ mes_examples }}

{{ chat_start }}
{{ chat_history }}

{% if wi_after %}[Active Context]
{{ wi_after }}

{% endif %}{% if author_note %}[Instruction: {{ author_note }}]
{% endif %}{{ post_history_instructions }}""",

    "story_mode": """{% if jailbreak %}{{ jailbreak }}

{% endif %}[Story Setting]
{{ scenario }}

[Characters]
{{ description }}

{% if wi_before %}[World Details]
{{ wi_before }}

{% endif %}[Story So Far]
{{ chat_history }}

{% if wi_after %}[Current Context]
{{ wi_after }}

{% endif %}{% if author_note %}[Narration Style: {{ author_note }}]{% endif %}""",

    "qa_mode": """System: {{ system_prompt }}

{% if wi_before %}Knowledge Base:
{{ wi_before }}

{% endif %}{{ character_core }}

Conversation:
{{ chat_history }}

{% if wi_after %}Additional Context:
{{ wi_after }}
{% endif %}""",
}


# Knowledge entry position slot -> template variable it feeds.
INSERTION_POSITIONS: Dict[str, str] = {
    "before_char": "wi_before",
    "after_char": "wi_before",
    "after_example": "wi_before",
    "after_history": "wi_after",
    "in_chat": "chat_history",
    "author_note_top": "author_note",
    "author_note_bottom": "post_history_instructions",
}


@dataclass
class TemplateMetadata:
    id: str
    name: str
    description: str
    category: str
    is_builtin: bool = True


TEMPLATE_METADATA: List[TemplateMetadata] = [
    TemplateMetadata("default", "Default", "Standard layout that works for every scenario", "general"),
    TemplateMetadata("minimal", "Minimal", "Description, history and author's note only", "general"),
    TemplateMetadata("roleplay_optimized", "Roleplay optimized", "Sectioned layout for roleplay", "roleplay"),
    TemplateMetadata("story_mode", "Story mode", "Narrative layout for story writing", "story"),
    TemplateMetadata("qa_mode", "Q&A mode", "Knowledge-base question answering", "qa"),
]


def get_template(template_id: str) -> Optional[str]:
    return BUILTIN_TEMPLATES.get(template_id)


def get_all_templates() -> List[TemplateMetadata]:
    return list(TEMPLATE_METADATA)


def get_templates_by_category(category: str) -> List[TemplateMetadata]:
    return [t for t in TEMPLATE_METADATA if t.category == category]


def first_line(value: Optional[str]) -> str:
    """Jinja filter: the text up to the first newline."""
    if not value:
        return ""
    return str(value).split("\n", 1)[0]


class TemplateRenderer:
    """Renders named or inline templates with Jinja2.

    Rendering is deterministic: the same template and data always give the
    same text, with runs of blank lines collapsed and outer whitespace removed.
    Templates can use the ``first_line`` filter.
    """

    def __init__(self, templates: Optional[Mapping[str, str]] = None):
        self._templates: Dict[str, str] = dict(BUILTIN_TEMPLATES)
        self.env = Environment(
            loader=DictLoader(self._templates),
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.filters["first_line"] = first_line
        for name, source in (templates or {}).items():
            self.register_template(name, source)

    def validate(self, source: str) -> Tuple[bool, Optional[str]]:
        """
        Check that ``source`` compiles.

        Returns:
            ``(True, None)`` when valid, otherwise ``(False, error message)``
        """
        try:
            self.env.parse(source)
        except TemplateSyntaxError as e:
            return False, f"line {e.lineno}: {e.message}"
        return True, None

    def register_template(self, name: str, source: str):
        """
        Add or replace a named template.

        Raises:
            ConfigError: if the template does not compile
        """
        valid, error = self.validate(source)
        if not valid:
            raise ConfigError(f"Invalid template '{name}': {error}")
        self._templates[name] = source

    def has_template(self, name: str) -> bool:
        return name in self._templates

    def template_names(self) -> List[str]:
        return sorted(self._templates)

    def render(self, name: str, data: Mapping[str, Any]) -> str:
        """
        Render the template registered as ``name``.

        Unknown names fall back to the default template.

        Args:
            name: Template name
            data: Template variables

        Returns:
            Rendered text
        """
        try:
            template = self.env.get_template(name)
        except TemplateNotFound:
            logger.warning("Unknown template '%s', using '%s'", name, DEFAULT_TEMPLATE)
            template = self.env.get_template(DEFAULT_TEMPLATE)
        return self._normalize(template.render(**data))

    def render_string(self, source: str, data: Mapping[str, Any]) -> str:
        """Render an inline template string."""
        return self._normalize(self.env.from_string(source).render(**data))

    @staticmethod
    def _normalize(text: str) -> str:
        return re.sub(r'\n{3,}', '\n\n', text).strip()
