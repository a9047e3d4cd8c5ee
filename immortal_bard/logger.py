"""
Run logging for Immortal Bard.

Handles JSONL logging of each beseech and rich console output.
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from .config import get_runs_dir
from .types import BeseechResult


def slugify(text: str, max_length: int = 30) -> str:
    """Convert text to a filesystem-safe slug."""
    # Convert to lowercase and replace spaces/special chars with underscores
    slug = re.sub(r'[^\w\s-]', '', text.lower())
    slug = re.sub(r'[-\s]+', '_', slug).strip('_')
    return slug[:max_length]


def _json_safe(value: Any) -> Any:
    """Round-trip a value through JSON, falling back to repr for odd types."""
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return repr(value)


class RunLogger:
    """Manages logging for a single performance (one browser session)."""

    def __init__(
        self,
        title: str,
        enable_console: bool = True,
        runs_dir: Optional[Path] = None,
    ):
        """Initialize the run logger.

        Args:
            title: Name of the run (used for directory naming)
            enable_console: Whether to print to console
            runs_dir: Where run directories go (defaults to ~/.immortal_bard/runs)
        """
        self.title = title
        self.console = Console() if enable_console else None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base = runs_dir if runs_dir is not None else get_runs_dir()
        self.run_dir = base / f"{timestamp}_{slugify(title) or 'run'}"
        self.run_dir.mkdir(parents=True, exist_ok=True)

        self.lines_file = self.run_dir / "lines.jsonl"
        self.lines_file.touch()

        self.line_count = 0
        self.error_count = 0

    @property
    def run_path(self) -> Path:
        """Get the path to the run directory."""
        return self.run_dir

    def log_line(
        self,
        instruction: str,
        result: BeseechResult,
        used_context: bool = False,
        timeout: Optional[int] = None,
    ) -> None:
        """Append one beseech to the JSONL log.

        Args:
            instruction: The natural-language instruction
            result: What beseech returned
            used_context: Whether page context went into the prompt
            timeout: Execution timeout used, in seconds
        """
        self.line_count += 1
        if result.error:
            self.error_count += 1

        line_data = {
            "line": self.line_count,
            "timestamp": datetime.now().isoformat(),
            "instruction": instruction,
            "code": result.code,
            "result": _json_safe(result.result),
            "error": result.error,
            "used_context": used_context,
            "timeout": timeout,
        }

        with open(self.lines_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(line_data) + "\n")

    def read_lines(self) -> list[dict[str, Any]]:
        """Read back every logged line."""
        with open(self.lines_file, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    def print_header(self, provider: str, model: Optional[str]) -> None:
        """Print the run header to console."""
        if not self.console:
            return

        self.console.print()
        self.console.print(Panel(
            f"[bold cyan]Run:[/bold cyan] {self.title}\n"
            f"[bold cyan]Provider:[/bold cyan] {provider} ({model or 'default model'})",
            title="🎭 Immortal Bard",
            border_style="cyan",
        ))
        self.console.print()

    def print_instruction(self, instruction: str) -> None:
        if not self.console:
            return

        text = Text()
        text.append(f"Line {self.line_count + 1}: ", style="bold")
        text.append(instruction, style="bold cyan")
        self.console.print(text)

    def print_result(self, result: BeseechResult) -> None:
        """Print the generated code and what it returned."""
        if not self.console:
            return

        if result.code:
            self.console.print(Syntax(result.code, "javascript", theme="ansi_dark", word_wrap=True))

        if result.error:
            self.console.print(f"  [red]✗[/red] [bold red]Error:[/bold red] {result.error}")
        else:
            rendered = json.dumps(_json_safe(result.result), indent=2)
            self.console.print(f"  [green]✓[/green] [dim]Returned:[/dim] {rendered}")
        self.console.print()

    def print_summary(self) -> None:
        """Print the run summary to console."""
        if not self.console:
            return

        table = Table(title="Run Summary", show_header=False)
        table.add_column("Property", style="dim")
        table.add_column("Value")

        table.add_row("Instructions", str(self.line_count))
        table.add_row("Errors", str(self.error_count))
        table.add_row("Logs Directory", str(self.run_dir))
        table.add_row("Lines Log", str(self.lines_file))

        self.console.print()
        self.console.print(table)
