"""
CLI for Immortal Bard.

Provides the command-line interface using argparse.
"""

import argparse
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .bard import ImmortalBard
from .config import DEFAULTS, BardSettings
from .errors import BardError
from .logger import RunLogger
from .providers import Provider
from .types import CAPTURE_STRATEGIES, SceneConfig


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="immortal-bard",
        description="Immortal Bard - tell a remote browser what to do in plain words.",
        epilog="""
Examples:
  # Open a page and read its title
  immortal-bard run "Navigate to https://example.com" "Return the page title"

  # Use OpenAI with a specific model and a longer timeout
  immortal-bard run "Search for Gojo and open the first result" --provider openai --model gpt-4.1 --timeout 120

  # Describe the page as a DOM tree instead of an ARIA snapshot
  immortal-bard run "Fill the login form" --context-strategy dom --max-depth 8
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Immortal Bard {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run",
        help="Open a browser session and carry out instructions in order",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    run_parser.add_argument(
        "instructions",
        nargs="+",
        help="Instructions in natural language, run one after another",
    )

    run_parser.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        default=DEFAULTS["provider"],
        help=f"LLM provider (default: {DEFAULTS['provider']})",
    )

    run_parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model name (default: the provider's default model)",
    )

    run_parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help=f"Execution timeout per instruction in seconds, 1-300 (default: {DEFAULTS['timeout']})",
    )

    run_parser.add_argument(
        "--no-context",
        action="store_true",
        default=False,
        help="Do not capture page context before generating code",
    )

    run_parser.add_argument(
        "--context-strategy",
        choices=CAPTURE_STRATEGIES,
        default=DEFAULTS["context_strategy"],
        help=f"How to describe the page to the model (default: {DEFAULTS['context_strategy']})",
    )

    run_parser.add_argument(
        "--max-tokens",
        type=int,
        default=DEFAULTS["context_max_tokens"],
        help=f"Token budget for page context (default: {DEFAULTS['context_max_tokens']})",
    )

    run_parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULTS["dom_max_depth"],
        help=f"DOM depth for --context-strategy dom (default: {DEFAULTS['dom_max_depth']})",
    )

    run_parser.add_argument(
        "--no-log",
        action="store_true",
        default=False,
        help="Do not write a run log under ~/.immortal_bard/runs",
    )

    run_parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )

    return parser


def configure_logging(debug: bool) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=debug)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def run_command(args: argparse.Namespace) -> int:
    """Run the instructions given on the command line.

    Args:
        args: Parsed arguments

    Returns:
        Exit code: 0 when every instruction succeeded, 1 otherwise
    """
    configure_logging(args.debug or BardSettings().debug)
    console = Console()

    run_logger = None
    if not args.no_log:
        run_logger = RunLogger(" ".join(args.instructions), enable_console=True)

    scene = SceneConfig(
        provider=args.provider,
        model=args.model,
        context_capture={
            "enabled": not args.no_context,
            "strategy": args.context_strategy,
            "max_tokens": args.max_tokens,
            "max_depth": args.max_depth,
        },
    )

    failures = 0
    try:
        with ImmortalBard(run_logger=run_logger) as bard:
            bard.scene(scene)
            if run_logger:
                run_logger.print_header(scene.provider.value, bard.code_generator.model)

            with bard.performance():
                for instruction in args.instructions:
                    if run_logger:
                        run_logger.print_instruction(instruction)
                    else:
                        console.print(f"[bold cyan]{instruction}[/bold cyan]")

                    result = bard.beseech(instruction, timeout=args.timeout)
                    if not result.ok:
                        failures += 1

                    if run_logger:
                        run_logger.print_result(result)
                    else:
                        console.print(result.code)
                        console.print(result.error if result.error else result.result)

        if run_logger:
            run_logger.print_summary()
        return 0 if failures == 0 else 1

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except BardError as e:
        console.print(f"[bold red]Fatal error: {e}[/bold red]")
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "run":
        return run_command(args)

    # Unknown command
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
