"""Terminal output for streamed text and diagnostics."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape


class FragmentPrinter:
    """Prints text fragments as they arrive.

    Fragments are written to ``console``'s file verbatim, so the printed
    text is exactly what the model sent.
    Diagnostics go to ``err_console`` so they never mix into stdout.
    """

    def __init__(self, console: Console, err_console: Console | None = None) -> None:
        self._console = console
        self._err_console = err_console or console
        self._printed = False
        self._at_line_start = True

    @property
    def printed(self) -> bool:
        """Whether any text has been printed."""
        return self._printed

    def write(self, fragment: str) -> None:
        if not fragment:
            return
        # Bypass rendering: Rich would expand tabs and interpret markup
        self._console.file.write(fragment)
        self._console.file.flush()
        self._printed = True
        self._at_line_start = fragment.endswith("\n")

    def finish(self) -> None:
        """End the streamed text with a single newline."""
        self._console.print()
        self._at_line_start = True

    def diagnostic(self, message: str, *, style: str = "yellow") -> None:
        """Print a one-line diagnostic without disturbing the text stream."""
        if not self._at_line_start and self._err_console is self._console:
            self._console.print()
            self._at_line_start = True
        self._err_console.print(f"[{style}]{escape(message)}[/{style}]")
