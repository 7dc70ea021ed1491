from __future__ import annotations

import logging
import os
import signal
import subprocess
from typing import Any, Callable, Dict, List, Mapping, Sequence

from common.errors import NotFoundError


logger = logging.getLogger("pushenv.sync.runner")

FORWARDED_SIGNALS: List[signal.Signals] = [
    sig for sig in (getattr(signal, name, None) for name in ("SIGINT", "SIGTERM", "SIGHUP")) if sig is not None
]


def build_child_env(secrets: Mapping[str, str], base: Mapping[str, str] | None = None) -> Dict[str, str]:
    """Parent environment overlaid with the decrypted variables."""
    env = dict(os.environ if base is None else base)
    env.update(secrets)
    return env


def run_command(
    command: Sequence[str],
    secrets: Mapping[str, str],
    *,
    popen: Callable[..., Any] = subprocess.Popen,
) -> int:
    """Run `command` with `secrets` injected and return its exit code.

    Nothing is written to disk. A single argument goes through the shell
    (``pushenv run "npm start"``); several arguments are executed directly.
    SIGINT/SIGTERM/SIGHUP received while the child runs are forwarded to it,
    and the previous handlers are restored when it exits. A child killed by
    signal N yields 128 + N, like an interactive shell.
    """
    if not command:
        raise ValueError("No command specified")

    shell = len(command) == 1
    args: Any = command[0] if shell else list(command)
    try:
        child = popen(args, env=build_child_env(secrets), shell=shell)
    except FileNotFoundError as exc:
        raise NotFoundError(f"Failed to start command: {exc}") from exc

    def _forward(signum: int, _frame: Any) -> None:
        if child.poll() is None:
            logger.debug("Forwarding signal %d to pid %s", signum, getattr(child, "pid", "?"))
            child.send_signal(signum)

    previous: Dict[signal.Signals, Any] = {}
    try:
        for sig in FORWARDED_SIGNALS:
            previous[sig] = signal.signal(sig, _forward)
        returncode = child.wait()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if returncode < 0:
        return 128 + (-returncode)
    return returncode


__all__ = ["FORWARDED_SIGNALS", "build_child_env", "run_command"]
