# src/mindcore/cli.py
"""
Command-line entry points for MindCore.

Hook commands, invoked by the host editor:
- ``mindcore process-session``: filter and store a finished session
- ``mindcore inject-context``: print recent activity at session start

Hook commands never fail: every error is reported as one line on stderr
and the exit code is always 0.

Maintenance and developer commands:
- ``mindcore status``, ``mindcore sync``, ``mindcore feedback-sync``
- ``mindcore retain``, ``mindcore recall``, ``mindcore reflect``
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

from .api import MindCore
from .config.loader import load_config
from .exceptions import MindCoreError
from .ingestion.transcript import read_transcript
from .logging_config import configure_logging
from .models import FactType, QueueStats

logger = logging.getLogger(__name__)

DEFAULT_HOOK_TIMEOUT = 3.0
DEFAULT_SYNC_BUDGET = 2.0


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================

class OutputFormatter:
    """Formats CLI output in various styles."""

    def __init__(self, use_color: bool = True, json_output: bool = False):
        self.use_color = use_color and sys.stdout.isatty()
        self.json_output = json_output

    def _color(self, text: str, color: str) -> str:
        if not self.use_color:
            return text
        colors = {
            'green': '\033[92m',
            'red': '\033[91m',
            'yellow': '\033[93m',
            'blue': '\033[94m',
            'bold': '\033[1m',
            'reset': '\033[0m'
        }
        return f"{colors.get(color, '')}{text}{colors['reset']}"

    def success(self, text: str) -> str:
        return self._color(f"✓ {text}", 'green')

    def error(self, text: str) -> str:
        return self._color(f"✗ {text}", 'red')

    def warning(self, text: str) -> str:
        return self._color(f"⚠ {text}", 'yellow')

    def header(self, text: str) -> str:
        return self._color(text, 'bold')

    def format_state(self, state: str) -> str:
        if state in ('online', 'healthy'):
            return self._color(state, 'green')
        if state == 'degraded':
            return self._color(state, 'yellow')
        return self._color(state, 'red')

    def dump(self, payload: Dict[str, Any]) -> None:
        print(json.dumps(payload, indent=2, default=str))


def _stats_dict(stats: Optional[QueueStats]) -> Optional[Dict[str, Any]]:
    return stats.model_dump(mode="json") if stats is not None else None


def _hook_error(command: str, error: BaseException) -> int:
    """Report a hook failure on stderr without failing the host."""
    print(f"mindcore {command}: {error}", file=sys.stderr)
    logger.debug(f"{command} failed", exc_info=True)
    return 0


async def _open_mind(args: argparse.Namespace) -> MindCore:
    return await MindCore.create(project_path=args.project, config_file_path=args.config)


# =============================================================================
# HOOK COMMANDS
# =============================================================================

async def cmd_process_session(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    """
    Session-end hook: read a transcript (file or stdin), filter it and store it.

    Returns:
        Always 0.
    """
    try:
        transcript = read_transcript(args.transcript)
        if transcript.empty:
            if formatter.json_output:
                formatter.dump({"processed": False, "reason": "empty transcript"})
            return 0

        async with await _open_mind(args) as mind:
            result = await mind.on_session_end(transcript.text, session_id=transcript.session_id)

        if formatter.json_output:
            formatter.dump({"processed": True, **result.model_dump(mode="json")})
        elif result.filter.skip:
            print(f"mindcore: session skipped ({result.filter.reason})", file=sys.stderr)
        else:
            where = "offline queue" if result.offline else "memory backend"
            print(
                f"mindcore: stored {result.filter.filtered_length} of "
                f"{result.filter.original_length} chars in {where}",
                file=sys.stderr,
            )
        return 0
    except Exception as e:
        return _hook_error("process-session", e)


async def cmd_inject_context(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    """
    Session-start hook: print the recent-activity block, then drain leftovers.

    Building the context is bounded by ``--timeout`` seconds and is printed
    before any queued record is delivered. The drain that follows stops
    between records once ``--sync-budget`` seconds have passed; whatever is
    left stays queued for the next session.

    Returns:
        Always 0.
    """
    async def build() -> Tuple[MindCore, str]:
        mind = await _open_mind(args)
        try:
            return mind, await mind.on_session_start()
        except BaseException:
            await mind.close()
            raise

    try:
        mind, context = await asyncio.wait_for(build(), timeout=args.timeout)
    except asyncio.TimeoutError:
        return _hook_error("inject-context", TimeoutError(f"timed out after {args.timeout}s"))
    except Exception as e:
        return _hook_error("inject-context", e)

    if context:
        print(context, flush=True)

    async with mind:
        try:
            await mind.attempt_recovery(deadline=time.monotonic() + args.sync_budget)
        except Exception as e:
            return _hook_error("inject-context", e)
    return 0


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

async def cmd_status(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    """Show backend health, connection state, bank and queue statistics."""
    async with await _open_mind(args) as mind:
        health = await mind.client.health()
        store = mind.get_offline_store()
        feedback = mind.get_offline_feedback_queue()
        memory_stats = await store.get_stats() if store else None
        feedback_stats = await feedback.get_stats() if feedback else None

        if formatter.json_output:
            formatter.dump({
                "backend": mind.client.base_url,
                "health": health.model_dump(mode="json"),
                "state": mind.state.value,
                "bank_id": mind.bank_id,
                "offline_memories": _stats_dict(memory_stats),
                "offline_feedback": _stats_dict(feedback_stats),
            })
            return 0

        print(formatter.header("MindCore Status"))
        print("=" * 45)
        print(f"Backend: {mind.client.base_url}")
        print(f"  Health: {formatter.format_state('healthy' if health.healthy else 'unhealthy')}")
        if health.version:
            print(f"  Version: {health.version}")
        if health.error:
            print(f"  Error: {health.error}")
        print(f"State: {formatter.format_state(mind.state.value)}")
        print(f"Bank: {mind.bank_id}")
        for label, stats in (("Offline memories", memory_stats), ("Offline feedback", feedback_stats)):
            if stats is None:
                print(f"{label}: {formatter.warning('queue unavailable')}")
            else:
                print(f"{label}: {stats.pending} pending, {stats.synced} synced")
                if stats.last_sync_success:
                    print(f"  Last sync: {stats.last_sync_success.isoformat()}")
    return 0


async def cmd_sync(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    """Attempt recovery and drain both offline queues. Exit 1 if still degraded."""
    async with await _open_mind(args) as mind:
        store = mind.get_offline_store()
        feedback = mind.get_offline_feedback_queue()
        before = (
            await store.get_stats() if store else None,
            await feedback.get_stats() if feedback else None,
        )
        online = await mind.attempt_recovery()
        after = (
            await store.get_stats() if store else None,
            await feedback.get_stats() if feedback else None,
        )

    pending_before = [s.pending if s else 0 for s in before]
    pending_after = [s.pending if s else 0 for s in after]
    if formatter.json_output:
        formatter.dump({
            "online": online,
            "memories": {"before": pending_before[0], "remaining": pending_after[0]},
            "feedback": {"before": pending_before[1], "remaining": pending_after[1]},
        })
    elif online:
        print(formatter.success(
            f"Synced {pending_before[0] - pending_after[0]} memories and "
            f"{pending_before[1] - pending_after[1]} feedback signals"
        ))
        if any(pending_after):
            print(formatter.warning(f"{pending_after[0]} memories and {pending_after[1]} signals still pending"))
    else:
        print(formatter.warning(
            f"Memory backend unavailable; {pending_after[0]} memories and {pending_after[1]} signals remain queued"
        ))
    return 0 if online else 1


async def cmd_feedback_sync(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    """Deliver queued feedback signals. Exit 1 if the backend is unreachable."""
    async with await _open_mind(args) as mind:
        if mind.is_degraded and not await mind.attempt_recovery():
            if formatter.json_output:
                formatter.dump({"online": False, "synced": 0})
            else:
                print(formatter.warning("Memory backend unavailable; feedback stays queued"))
            return 1

        report = await mind.sync_offline_feedback()
        queue = mind.get_offline_feedback_queue()
        cleared = report.cleared
        if args.clear and queue is not None:
            cleared += await queue.clear_synced()

    if formatter.json_output:
        formatter.dump({"online": True, **report.to_dict(), "cleared": cleared})
    elif report.error:
        print(formatter.error(f"Synced {report.synced}/{report.attempted} signals: {report.error}"))
    else:
        print(formatter.success(f"Synced {report.synced} feedback signal(s), cleared {cleared}"))
    return 0 if report.error is None else 1


# =============================================================================
# DEVELOPER COMMANDS
# =============================================================================

async def cmd_retain(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    async with await _open_mind(args) as mind:
        result = await mind.retain(args.content, context=args.context, fact_type=args.fact_type)
    if formatter.json_output:
        formatter.dump(result.model_dump(mode="json"))
    elif result.offline:
        print(formatter.warning(f"Stored offline: {', '.join(result.memory_ids) or 'failed'}"))
    else:
        print(formatter.success(f"Retained: {', '.join(result.memory_ids) or '(no facts extracted)'}"))
    return 0 if result.memory_ids else 1


async def cmd_recall(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    async with await _open_mind(args) as mind:
        memories = await mind.recall(args.query, budget=args.budget, fact_type=args.fact_type)
        degraded = mind.is_degraded
    if formatter.json_output:
        formatter.dump({"offline": degraded, "memories": [m.model_dump(mode="json") for m in memories]})
        return 0
    if degraded:
        print(formatter.warning("Degraded: searched the offline queue only"))
    if not memories:
        print("No memories found.")
    for memory in memories:
        print(f"- [{memory.fact_type.value}] {memory.text}")
    return 0


async def cmd_reflect(args: argparse.Namespace, formatter: OutputFormatter) -> int:
    async with await _open_mind(args) as mind:
        result = await mind.reflect(args.query)
    if formatter.json_output:
        formatter.dump(result.model_dump(mode="json"))
        return 0
    print(result.text)
    for opinion in result.opinions:
        print(f"- {opinion.opinion} (confidence {opinion.confidence:.2f})")
    return 0


# =============================================================================
# PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the mindcore CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project", "-p",
        help="Project directory (default: current directory)",
        default=None
    )
    common.add_argument(
        "--config", "-c",
        help="Path to configuration file",
        default=None
    )
    common.add_argument(
        "--json",
        help="Output in JSON format",
        action="store_true"
    )
    common.add_argument(
        "--verbose", "-v",
        help="Log debug output to stderr",
        action="store_true"
    )
    common.add_argument(
        "--no-color",
        help="Disable colored output",
        action="store_true"
    )

    parser = argparse.ArgumentParser(
        prog="mindcore",
        description="MindCore memory integration CLI"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser("process-session", parents=[common], help="Session-end hook: store the transcript")
    process_parser.add_argument(
        "--transcript", "-t",
        help="Transcript file (default: read stdin)",
        default=None
    )

    inject_parser = subparsers.add_parser("inject-context", parents=[common], help="Session-start hook: print recent activity")
    inject_parser.add_argument(
        "--timeout",
        help=f"Overall time limit in seconds (default: {DEFAULT_HOOK_TIMEOUT})",
        type=float,
        default=DEFAULT_HOOK_TIMEOUT
    )
    inject_parser.add_argument(
        "--sync-budget",
        help=f"Seconds spent draining the offline queues after printing (default: {DEFAULT_SYNC_BUDGET})",
        type=float,
        default=DEFAULT_SYNC_BUDGET
    )

    subparsers.add_parser("status", parents=[common], help="Show backend health and queue statistics")
    subparsers.add_parser("sync", parents=[common], help="Recover and drain the offline queues")

    feedback_parser = subparsers.add_parser("feedback-sync", parents=[common], help="Deliver queued feedback signals")
    feedback_parser.add_argument(
        "--clear",
        help="Delete synced signals after the sync",
        action="store_true"
    )

    fact_types = [t.value for t in FactType]

    retain_parser = subparsers.add_parser("retain", parents=[common], help="Store content in memory")
    retain_parser.add_argument("content", help="Content to remember")
    retain_parser.add_argument("--context", help="Where the content came from", default=None)
    retain_parser.add_argument("--fact-type", choices=fact_types, default=FactType.EXPERIENCE.value)

    recall_parser = subparsers.add_parser("recall", parents=[common], help="Search memories")
    recall_parser.add_argument("query", help="What to search for")
    recall_parser.add_argument("--fact-type", choices=fact_types, default=None)
    recall_parser.add_argument("--budget", choices=["low", "mid", "high"], default="mid")

    reflect_parser = subparsers.add_parser("reflect", parents=[common], help="Reason over accumulated memories")
    reflect_parser.add_argument("query", help="What to think about")

    return parser


COMMANDS = {
    "process-session": cmd_process_session,
    "inject-context": cmd_inject_context,
    "status": cmd_status,
    "sync": cmd_sync,
    "feedback-sync": cmd_feedback_sync,
    "retain": cmd_retain,
    "recall": cmd_recall,
    "reflect": cmd_reflect,
}

HOOK_COMMANDS = frozenset({"process-session", "inject-context"})


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the mindcore CLI.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    parser = create_parser()
    argv = sys.argv[1:] if args is None else list(args)
    try:
        parsed = parser.parse_args(argv)
    except SystemExit as e:
        if e.code and HOOK_COMMANDS.intersection(argv):
            return 0
        raise

    if parsed.command is None:
        parser.print_help()
        return 0

    is_hook = parsed.command in HOOK_COMMANDS
    try:
        logging_section = load_config(parsed.project, parsed.config).logging
    except MindCoreError as e:
        if is_hook:
            return _hook_error(parsed.command, e)
        print(f"mindcore: {e}", file=sys.stderr)
        return 1
    configure_logging(config=logging_section, verbose=parsed.verbose)

    formatter = OutputFormatter(
        use_color=not parsed.no_color,
        json_output=parsed.json
    )

    try:
        return asyncio.run(COMMANDS[parsed.command](parsed, formatter))
    except Exception as e:
        if is_hook:
            return _hook_error(parsed.command, e)
        print(formatter.error(str(e)), file=sys.stderr)
        logger.debug(f"{parsed.command} failed", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
