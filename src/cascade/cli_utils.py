"""CLI utility functions for Cascade.

This module provides common utilities used across CLI commands including:
- Error handling and formatting
- Banner output
- Build summary printing
"""

import sys
from typing import List

from cascade.build import Artifact
from cascade.errors import (
    ArtifactIntegrityError,
    BuildFailure,
    CascadeError,
    ConfigurationError,
    PublishError,
)


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Build failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(f"{ErrorFormatter.YELLOW}⚠ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_build_failure(error: BuildFailure) -> None:
        """Print the failing job's identity and the compiler output, then exit 1."""
        ErrorFormatter.print_error(f"Build failed: {error.identity}", error.output or str(error))
        sys.exit(1)

    @staticmethod
    def handle_cascade_error(error: CascadeError) -> None:
        """Handle any Cascade error with a title matching its category."""
        if isinstance(error, BuildFailure):
            ErrorFormatter.handle_build_failure(error)
            return
        if isinstance(error, ConfigurationError):
            title = "Configuration error"
        elif isinstance(error, ArtifactIntegrityError):
            title = "Artifact integrity error"
        elif isinstance(error, PublishError):
            title = "Publish failed"
        else:
            title = "Error"
        ErrorFormatter.print_error(title, str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class BannerFormatter:
    """Formats and displays banner messages with borders."""

    DEFAULT_WIDTH = 80
    DEFAULT_BORDER_CHAR = "="

    @staticmethod
    def format_banner(
        message: str,
        width: int = DEFAULT_WIDTH,
        border_char: str = DEFAULT_BORDER_CHAR,
        center: bool = True,
    ) -> str:
        """Format a banner message with top and bottom borders.

        Args:
            message: The message to display (can be multi-line)
            width: Width of the banner in characters (default: 80)
            border_char: Character to use for borders (default: "=")
            center: Whether to center text (default: True)

        Returns:
            Formatted banner string with borders
        """
        border = border_char * width
        formatted_lines = [border]
        for line in message.split("\n"):
            if center:
                formatted_lines.append(" " * ((width - len(line)) // 2) + line)
            else:
                formatted_lines.append("  " + line)
        formatted_lines.append(border)
        return "\n".join(formatted_lines)

    @staticmethod
    def print_banner(message: str, width: int = DEFAULT_WIDTH, center: bool = True) -> None:
        print()
        print(BannerFormatter.format_banner(message, width=width, center=center))


class SummaryPrinter:
    """Prints build summaries."""

    @staticmethod
    def format_artifacts(artifacts: List[Artifact]) -> str:
        """One line per artifact: directory-relative name, size, short checksum."""
        if not artifacts:
            return "  (no binaries collected)"
        width = max(len(a.name) for a in artifacts)
        lines = []
        for artifact in sorted(artifacts, key=lambda a: (a.variant.value, a.platform.value, a.name)):
            lines.append(
                f"  {artifact.name:<{width}}  {artifact.variant.value:<12} {artifact.platform.value:<8}"
                f" {artifact.size:>12,} bytes  {artifact.sha256[:16]}"
            )
        return "\n".join(lines)

    @staticmethod
    def print_skipped(skipped: List[str]) -> None:
        for name in skipped:
            ErrorFormatter.print_warning(
                f"Optional repository {name} failed to build and was skipped"
            )
