"""Operator-facing prompts and output."""

from collections.abc import Callable

from rich.console import Console

from jvmprof.errors import ProfilerError


class Terminal:
    """
    Thin wrapper around a rich Console for prompts and styled output.

    All interactive components talk to the operator through this class so
    tests can drive them with scripted answers.
    """

    def __init__(
        self,
        console: Console | None = None,
        reader: Callable[[str], str] | None = None,
    ) -> None:
        """
        Initialize the terminal.

        Args:
            console: Console to print to. Defaults to stdout.
            reader: Function that shows a prompt and returns a line of input.
        """
        self.console = console or Console(highlight=False)
        self._reader = reader or self.console.input

    def say(self, text: str = "", style: str | None = None, end: str = "\n") -> None:
        """Print plain text, optionally styled. Text is never parsed as markup."""
        self.console.print(text, style=style, markup=False, highlight=False, end=end)

    def heading(self, text: str) -> None:
        """Print a section heading."""
        self.say(text, style="bold yellow")
        self.say("-----")

    def info(self, text: str) -> None:
        """Print an informational line."""
        self.say(text, style="blue")

    def success(self, text: str) -> None:
        """Print a success line."""
        self.say(text, style="green")

    def warn(self, text: str) -> None:
        """Print a warning line."""
        self.say(text, style="yellow")

    def error(self, text: str) -> None:
        """Print an error line."""
        self.say(text, style="red")

    def report(self, error: ProfilerError) -> None:
        """Print an error with its remediation lines."""
        self.error(error.message)
        for line in error.remediation:
            self.say(f"  • {line}", style="yellow")

    def tick(self) -> None:
        """Print a single progress dot without a newline."""
        self.say(".", end="")

    def ask(self, prompt: str) -> str:
        """Prompt for a line of input and return it stripped."""
        return self._reader(prompt).strip()

    def confirm(self, prompt: str) -> bool:
        """Ask a yes/no question. Anything but y/Y means no."""
        return self.ask(f"{prompt} (y/N): ") in ("y", "Y")

    def pause(self, prompt: str = "Press Enter to continue or Ctrl+C to exit...") -> None:
        """Wait for the operator to press Enter."""
        self.ask(prompt)

    def ask_int(self, prompt: str) -> int:
        """Prompt until the operator enters a non-negative integer."""
        while True:
            answer = self.ask(prompt)
            if answer.isascii() and answer.isdigit():
                return int(answer)
            self.error("Invalid input. Please enter a number.")

    def ask_index(self, prompt: str, high: int, low: int = 0) -> int:
        """Prompt until the operator enters an integer between low and high."""
        while True:
            value = self.ask_int(prompt)
            if low <= value <= high:
                return value
            self.error(f"Invalid selection. Please choose a number between {low} and {high}.")
