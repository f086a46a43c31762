"""Command-line entry point: render a prompt from a scenario file."""

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import Any, Dict, List, Optional

import yaml

from .config.settings import EngineConfig, get_default_config
from .core.models import Character, ChatMessage, KnowledgeEntry
from .exceptions import LoreContextError
from .services.pipeline import PromptPipeline
from .services.stores import InMemoryHistoryStore, InMemoryKnowledgeStore
from .utils.message_formatter import MessageFormatter
from .utils.templates import get_all_templates


def load_scenario(path: str) -> Dict[str, Any]:
    """Load a YAML (or JSON, which YAML parses too) scenario file."""
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def load_config(path: Optional[str]) -> EngineConfig:
    if not path:
        return get_default_config().apply_env()
    if path.endswith('.json'):
        return EngineConfig.from_json(path).apply_env()
    return EngineConfig.from_yaml(path).apply_env()


def run_build(args: argparse.Namespace) -> int:
    scenario = load_scenario(args.scenario)
    config = load_config(args.config)

    chat_id = scenario.get('chat_id', 'cli')
    character_id = scenario.get('character_id', 'character')
    character = Character.from_dict(scenario.get('character', {}))

    history_store = InMemoryHistoryStore()
    history_store.extend(chat_id, [ChatMessage(m['role'], m['content'])
                                   for m in scenario.get('history', [])])
    knowledge_store = InMemoryKnowledgeStore(history_store)
    for data in scenario.get('entries', []):
        knowledge_store.add_entry(KnowledgeEntry.from_dict(data), [character_id])

    pipeline = PromptPipeline(knowledge_store, history_store, config)
    options = config.build_options()
    if args.template:
        options = replace(options, template_name=args.template)
    if args.max_context_tokens:
        options = replace(options, max_context_tokens=args.max_context_tokens)
    if args.reserve_tokens is not None:
        options = replace(options, reserve_tokens=args.reserve_tokens)

    built = pipeline.generate(chat_id, character_id, character,
                              scenario.get('message', ''), options)

    formatter = MessageFormatter()
    if args.format == 'anthropic':
        output: Any = formatter.to_anthropic_messages(built.messages)
    else:
        output = formatter.to_openai_messages(built.messages)
    if args.stats:
        output = {"messages": output, "stats": built.stats}

    json.dump(output, sys.stdout, indent=2, ensure_ascii=False, default=str)
    sys.stdout.write("\n")
    return 0


def run_templates(args: argparse.Namespace) -> int:
    for meta in get_all_templates():
        print(f"{meta.id:<20} {meta.category:<10} {meta.description}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lore-context",
                                     description="Assemble roleplay prompts within a token budget")
    parser.add_argument('-v', '--verbose', action='store_true', help="enable debug logging")
    subparsers = parser.add_subparsers(dest='command')

    build = subparsers.add_parser('build', help="render the prompt for a scenario file")
    build.add_argument('scenario', help="YAML/JSON scenario with character, entries, history and message")
    build.add_argument('-c', '--config', help="engine configuration (YAML or JSON)")
    build.add_argument('-t', '--template', help="template name")
    build.add_argument('--max-context-tokens', type=int)
    build.add_argument('--reserve-tokens', type=int)
    build.add_argument('--format', choices=['openai', 'anthropic'], default='openai')
    build.add_argument('--stats', action='store_true', help="include usage statistics")
    build.set_defaults(func=run_build)

    templates = subparsers.add_parser('templates', help="list built-in templates")
    templates.set_defaults(func=run_templates)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if not getattr(args, 'func', None):
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except (LoreContextError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
