"""
Bedrock Builder - turns a build request into applied, quality-gated file changes
using models on Amazon Bedrock. Terminal output built with Rich.
"""

import argparse
import json
import logging
import os
import sys
import threading
from typing import Dict, List

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.table import Table

from bedrock_service import BedrockService, BedrockError
from config import app_config, model_config, pipeline_config, get_credentials_info, get_model_name
from sandbox import LocalSandbox, MemorySandbox, Sandbox, SandboxError
from pipeline.action_queue import ActionQueue
from pipeline.build import BuildPipeline, BuildReport
from pipeline.quality import QualityGateRunner, format_results
from pipeline.types import PipelineEvent

# Log to a file so it doesn't interleave with the streamed output
logging.basicConfig(
    filename="bedrock_builder.log",
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Files larger than this are not copied into a dry-run sandbox or the prompt
MAX_CONTEXT_FILE_BYTES = 200 * 1024

STATUS_STYLES = {
    "success": "#3fb950",
    "error": "#f85149",
    "skipped": "#6e7681",
    "pending": "#d29922",
    "executing": "#58a6ff",
}


# ============================================================
# Helpers
# ============================================================

def load_project_files(root: str, paths: List[str] = None) -> Dict[str, str]:
    """Read text files under root (all of them, or just paths) into a dict."""
    source = LocalSandbox(root)
    files = {}
    for path in paths if paths is not None else source.list_files():
        try:
            full = source.resolve_path(path)
            if os.path.getsize(full) > MAX_CONTEXT_FILE_BYTES:
                continue
            files[path] = source.read_file(path)
        except (SandboxError, OSError) as e:
            logger.warning(f"Skipping {path}: {e}")
    return files


def make_sandbox(root: str, dry_run: bool) -> Sandbox:
    if dry_run:
        return MemorySandbox(load_project_files(root))
    return LocalSandbox(root, command_timeout=pipeline_config.shell_timeout)


class ConsoleReporter:
    """Renders pipeline events as they arrive"""

    def __init__(self, console: Console):
        self.console = console
        self._in_text = False

    def __call__(self, event: PipelineEvent) -> None:
        if event.type == "text":
            self.console.out(event.content, end="", highlight=False)
            self._in_text = True
            return
        if self._in_text:
            self.console.out("")
            self._in_text = False
        if event.type == "classification":
            data = event.data or {}
            self.console.print(
                f"[bold]Mode:[/bold] {data.get('mode')}  "
                f"[#6e7681]({rich_escape(event.content)})[/#6e7681]"
            )
        elif event.type == "selection":
            data = event.data or {}
            self.console.print(
                f"[bold]Model:[/bold] {data.get('tier', '').upper()} "
                f"{rich_escape(get_model_name(data.get('model_id', '')))}"
                f"  [#6e7681]{rich_escape(event.content)}[/#6e7681]"
            )
        elif event.type == "queue":
            data = event.data or {}
            kind = data.get("event")
            if kind == "action_start":
                self.console.print(f"  [#58a6ff]▶[/#58a6ff] {rich_escape(event.content)}")
            elif kind == "action_error":
                self.console.print(f"  [#f85149]✗ {rich_escape(event.content)}[/#f85149]")
        elif event.type == "error":
            self.console.print(f"[#f85149]Error:[/#f85149] {rich_escape(event.content)}")


def actions_table(report: BuildReport) -> Table:
    table = Table(title="Actions", show_lines=False)
    table.add_column("#", justify="right", style="#6e7681")
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("Status")
    for i, qa in enumerate(report.queued, start=1):
        target = qa.file_path if qa.kind == "file" else qa.content.split("\n")[0][:60]
        style = STATUS_STYLES.get(qa.status, "")
        status = f"[{style}]{qa.status}[/{style}]" if style else qa.status
        if qa.error:
            status += f" [#6e7681]{rich_escape(qa.error[:60])}[/#6e7681]"
        table.add_row(str(i), qa.kind, rich_escape(target or ""), status)
    return table


# ============================================================
# Entry Point
# ============================================================

def check_connection() -> int:
    console = Console()
    try:
        ok, message = BedrockService().test_connection()
    except BedrockError as e:
        ok, message = False, str(e)
    if ok:
        console.print(f"[#3fb950]✓[/#3fb950] {message} ({get_model_name(model_config.lite_model)})")
        return 0
    console.print(f"[#f85149]✗[/#f85149] {rich_escape(message)}")
    console.print(f"[#6e7681]{get_credentials_info()}[/#6e7681]")
    return 2


def main():
    parser = argparse.ArgumentParser(
        description="Bedrock Builder - AI build pipeline on Amazon Bedrock",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bedrock-builder "add a dark mode toggle"             Build in the current directory
  bedrock-builder -d ~/my-app "create a login page"    Build in a specific project
  bedrock-builder --dry-run --json "add a README"      Apply to an in-memory copy, print JSON
        """,
    )
    parser.add_argument("request", nargs="?", help="What to build (read from stdin when omitted)")
    parser.add_argument(
        "-d", "--dir",
        default=app_config.working_directory,
        help="Project directory actions apply to (default: WORKING_DIRECTORY or .)",
    )
    parser.add_argument("--dry-run", action="store_true",
                        help="Apply actions to an in-memory copy of the project")
    parser.add_argument("--json", action="store_true", help="Print the build report as JSON")
    parser.add_argument("--no-gates", action="store_true", help="Skip the quality gates")
    parser.add_argument("--no-thinking", action="store_true", help="Disable extended thinking")
    parser.add_argument("-c", "--context", action="append", default=[],
                        help="Project file to show the model (repeatable)")
    parser.add_argument("--check", action="store_true", help="Test the Bedrock connection and exit")

    args = parser.parse_args()

    if args.no_thinking:
        model_config.enable_thinking = False

    if args.check:
        sys.exit(check_connection())

    request = args.request if args.request else sys.stdin.read()
    request = request.strip()
    if not request:
        parser.error("empty request")

    working_dir = os.path.abspath(os.path.expanduser(args.dir))
    if not os.path.isdir(working_dir):
        print(f"Error: {working_dir} is not a directory")
        sys.exit(1)

    console = Console(stderr=args.json)
    try:
        service = BedrockService()
    except BedrockError as e:
        console.print(f"[#f85149]Bedrock unavailable:[/#f85149] {rich_escape(str(e))}")
        console.print(f"[#6e7681]{get_credentials_info()}[/#6e7681]")
        sys.exit(2)

    sandbox = make_sandbox(working_dir, args.dry_run)
    pipeline = BuildPipeline(
        service,
        sandbox,
        queue=ActionQueue(sandbox),
        gate_runner=QualityGateRunner(),
    )
    context = load_project_files(working_dir, args.context) if args.context else None

    if not args.json:
        where = "in-memory copy of " + working_dir if args.dry_run else working_dir
        console.print(f"[bold]Bedrock Builder[/bold]  [#6e7681]{rich_escape(where)}[/#6e7681]")

    abort = threading.Event()
    try:
        report = pipeline.run(
            request,
            context=context,
            abort=abort,
            on_event=None if args.json else ConsoleReporter(console),
            run_gates=not args.no_gates,
        )
    except KeyboardInterrupt:
        abort.set()
        pipeline.queue.cancel_pending()
        console.print("\n[#d29922]Interrupted; applied actions were kept[/#d29922]")
        sys.exit(130)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        if report.queued:
            console.print(actions_table(report))
        if report.quality is not None:
            console.print(rich_escape(format_results(report.quality)))
        console.print(pipeline.ledger.summary(), style="#6e7681")
        verdict = "[#3fb950]PASSED[/#3fb950]" if report.passed else "[#f85149]FAILED[/#f85149]"
        console.print(f"Build {verdict} in {report.duration_ms / 1000:.1f}s")

    sys.exit(0 if report.passed else 1)


if __name__ == "__main__":
    main()
