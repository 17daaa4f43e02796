"""Utilities for handling KeyboardInterrupt in try-except blocks.

Builds run in scheduler worker threads; a Ctrl-C caught there must be
forwarded to the main thread or the CLI never sees it.
"""

import _thread
import threading


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Propagate a KeyboardInterrupt to the main thread, then re-raise it.

    Usage:
        try:
            run_compiler()
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)

    Args:
        ke: The KeyboardInterrupt exception to handle

    Raises:
        KeyboardInterrupt: Always
    """
    if threading.current_thread() is not threading.main_thread():
        _thread.interrupt_main()
    raise ke
