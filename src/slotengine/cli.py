"""slotengine CLI - deterministic command-line access to the slot engine.

Usage:
    slotengine validate-slots --slots PATH
    slotengine analyze --slots PATH [--key KEY ...]
    slotengine evaluate --slots PATH [--values PATH] [--jurisdiction ID] [--domain ID]
    slotengine next-questions --slots PATH [--values PATH] [--max-count N]
                              [--importance-floor LEVEL] [--jurisdiction ID] [--domain ID]
    slotengine schema

Slot files are JSON or YAML; value files are JSON objects keyed by slot key
("-" reads stdin). Output is JSON on stdout with sorted keys.

Exit codes:
    0: Success
    1: Internal error (unexpected)
    2: Invalid input / failed validation
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from slotengine.config import load_engine_config
from slotengine.errors import (
    ConfigError,
    CycleDetectedError,
    SlotConfigError,
    SlotEngineError,
    SlotNotFoundError,
)
from slotengine.interview.engine import InterviewEngine
from slotengine.models.slot import Importance, Slot
from slotengine.models.values import dumps_values, loads_values
from slotengine.orchestration.orchestrator import CaseOrchestrator
from slotengine.persistence.cases import InMemoryCaseStore
from slotengine.registry.memory import InMemorySlotRegistry
from slotengine.resolution.resolver import DependencyResolver

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INTERNAL_ERROR = 1
EXIT_INVALID = 2

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class InputError(SlotEngineError):
    """Raised when a CLI input file cannot be used."""


def _output_json(data: Any) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(dumps_values(data, indent=2))


def _error_result(code: str, message: str, path: str = "$") -> dict[str, Any]:
    return {
        "errors": [{"code": code, "message": message, "path": path}],
        "pass": False,
    }


def _load_values(path: str | None) -> dict[str, Any]:
    """Load answers from a JSON file, or stdin when path is "-"."""
    if path is None:
        return {}
    try:
        content = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise InputError(f"Cannot read values: {e}") from e
    if not content.strip():
        return {}
    try:
        values = loads_values(content)
    except json.JSONDecodeError as e:
        raise InputError(f"Invalid JSON in values: {e}") from e
    if not isinstance(values, dict):
        raise InputError("Values must be a JSON object keyed by slot key")
    return values


def _question_dict(slot: Slot) -> dict[str, Any]:
    return {
        "key": slot.key,
        "name": slot.label,
        "data_type": slot.data_type.value,
        "importance": slot.importance.value,
        "options": list(slot.options),
    }


def cmd_validate_slots(args: argparse.Namespace) -> int:
    """Parse every record and check the dependency graph is acyclic."""
    registry = InMemorySlotRegistry.from_file(args.slots)
    analysis = DependencyResolver(registry).analyze()
    _output_json(
        {
            "errors": [],
            "max_depth": analysis.max_depth,
            "pass": True,
            "slot_count": len(registry),
        }
    )
    return EXIT_OK


def cmd_analyze(args: argparse.Namespace) -> int:
    """Print the layered evaluation order."""
    registry = InMemorySlotRegistry.from_file(args.slots)
    analysis = DependencyResolver(registry).analyze(args.key or None)
    _output_json(
        {
            "layers": analysis.layers,
            "max_depth": analysis.max_depth,
            "order": analysis.order,
            "total_slots": analysis.total_slots,
        }
    )
    return EXIT_OK


def _case_with_values(args: argparse.Namespace, store: InMemoryCaseStore) -> str:
    """Create a case holding the answers from --values; returns its id."""
    values = _load_values(args.values)
    case = store.create_case(jurisdiction_id=args.jurisdiction, domain_id=args.domain)
    store.save_case(case.case_id, values, [])
    return case.case_id


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate every calculated slot for the given answers."""
    registry = InMemorySlotRegistry.from_file(args.slots)
    store = InMemoryCaseStore()
    case_id = _case_with_values(args, store)
    orchestrator = CaseOrchestrator(
        registry=registry, case_store=store, config=load_engine_config()
    )
    outcome = orchestrator.evaluate_all(case_id)
    result = outcome.to_dict()
    del result["case_id"]
    result["pass"] = not outcome.failed
    _output_json(result)
    return EXIT_OK if not outcome.failed else EXIT_INVALID


def cmd_next_questions(args: argparse.Namespace) -> int:
    """Print the next questions and progress for the given answers."""
    registry = InMemorySlotRegistry.from_file(args.slots)
    store = InMemoryCaseStore()
    case_id = _case_with_values(args, store)
    case = store.load_case(case_id)

    interview = InterviewEngine(registry, store)
    questions = interview.next_questions(
        case,
        max_count=args.max_count,
        importance_floor=Importance(args.importance_floor),
    )
    progress = interview.progress(case).to_dict()
    _output_json(
        {
            "progress": progress,
            "questions": [_question_dict(slot) for slot in questions],
            "status": progress["status"],
        }
    )
    return EXIT_OK


def cmd_schema(args: argparse.Namespace) -> int:
    """Print the JSON schema of a slot record."""
    _output_json(Slot.model_json_schema(by_alias=False))
    return EXIT_OK


def _add_case_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--values",
        metavar="PATH",
        default=None,
        help='JSON object of answers keyed by slot key ("-" reads stdin)',
    )
    parser.add_argument("--jurisdiction", metavar="ID", default=None, help="Case jurisdiction")
    parser.add_argument("--domain", metavar="ID", default=None, help="Case legal domain")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="slotengine",
        description="Slot calculation and progressive disclosure engine",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=LOG_LEVELS,
        help="Logging level for stderr output (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    validate_parser = subparsers.add_parser(
        "validate-slots", help="Validate slot records and check for dependency cycles"
    )
    validate_parser.add_argument("--slots", required=True, metavar="PATH", help="Slot record file")

    analyze_parser = subparsers.add_parser("analyze", help="Show dependency layers")
    analyze_parser.add_argument("--slots", required=True, metavar="PATH", help="Slot record file")
    analyze_parser.add_argument(
        "--key",
        action="append",
        metavar="KEY",
        help="Slot to analyze (repeatable; default: all derived slots)",
    )

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate calculated slots")
    evaluate_parser.add_argument("--slots", required=True, metavar="PATH", help="Slot record file")
    _add_case_arguments(evaluate_parser)

    next_parser = subparsers.add_parser("next-questions", help="Show the next questions to ask")
    next_parser.add_argument("--slots", required=True, metavar="PATH", help="Slot record file")
    _add_case_arguments(next_parser)
    next_parser.add_argument(
        "--max-count", type=int, default=1, metavar="N", help="Questions to return (default: 1)"
    )
    next_parser.add_argument(
        "--importance-floor",
        default=Importance.LOW.value,
        choices=[level.value for level in Importance],
        help="Least important level still asked (default: LOW)",
    )

    subparsers.add_parser("schema", help="Print the slot record JSON schema")
    return parser


COMMANDS = {
    "validate-slots": cmd_validate_slots,
    "analyze": cmd_analyze,
    "evaluate": cmd_evaluate,
    "next-questions": cmd_next_questions,
    "schema": cmd_schema,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Invalid input / failed validation
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    try:
        return COMMANDS[args.command](args)
    except SlotConfigError as e:
        _output_json(
            {
                "errors": [
                    {"code": "INVALID_SLOT", "message": detail, "path": e.path}
                    for detail in e.details
                ],
                "pass": False,
            }
        )
        return EXIT_INVALID
    except CycleDetectedError as e:
        _output_json(_error_result("CYCLE_DETECTED", str(e)))
        return EXIT_INVALID
    except SlotNotFoundError as e:
        _output_json(_error_result("SLOT_NOT_FOUND", str(e)))
        return EXIT_INVALID
    except (InputError, ConfigError) as e:
        _output_json(_error_result("INVALID_INPUT", str(e)))
        return EXIT_INVALID
    except Exception as e:
        logger.exception("Unexpected error running %s", args.command)
        _output_json(_error_result("INTERNAL_ERROR", str(e)))
        return EXIT_INTERNAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
