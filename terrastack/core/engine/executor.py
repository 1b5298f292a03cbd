"""
Engine executor — runs a command in every stack of a run order.

Stacks run one at a time, in order.  Each run produces a receipt; a
failing stack never raises.

Flow:
    run order → compose env → look up command → spawn → wait / interrupt → receipt

Cancellation:
    Signals are turned into messages on an ``InterruptChannel``.  The
    first interrupt sends SIGTERM to the running command's process
    group and cancels every stack not yet started.  The second sends
    SIGTERM again.  The third, or the grace period running out after
    the first, sends SIGKILL.  An interrupted stack is done only when
    its whole process group is gone, not just the direct child.
"""

from __future__ import annotations

import logging
import os
import queue
import re
import signal
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from terrastack.adapters.base import ProcessLauncher
from terrastack.adapters.shell.command import ShellCommandAdapter
from terrastack.core.models.receipt import Receipt, RunReport, StackStatus
from terrastack.core.models.stack import Stack
from terrastack.core.observability.logging_config import stack_context

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05    # seconds between process polls

KILL_AFTER_INTERRUPTS = 3

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class RunOptions:
    """How ``run_stacks`` behaves."""

    root: Path
    continue_on_error: bool = False
    dry_run: bool = False
    env: dict[str, str] = field(default_factory=dict)   # project-wide overrides
    grace_period: float = 10.0
    base_env: dict[str, str] | None = None              # default: os.environ


@dataclass
class StackRunHooks:
    """Optional callbacks around each stack.

    ``before`` is called when a stack starts, ``after`` once its receipt
    is final (including canceled and skipped stacks).
    """

    before: Callable[[Stack], None] | None = None
    after: Callable[[Stack, Receipt], None] | None = None

    def started(self, stack: Stack) -> None:
        if self.before:
            self.before(stack)

    def finished(self, stack: Stack, receipt: Receipt) -> None:
        if self.after:
            self.after(stack, receipt)


class InterruptChannel:
    """Queue of interrupt requests consumed by the driver loop."""

    def __init__(self) -> None:
        self._queue: queue.Queue[int] = queue.Queue()

    def send(self, signum: int = signal.SIGINT) -> None:
        self._queue.put(signum)

    def receive(self, timeout: float) -> int | None:
        """Wait up to ``timeout`` seconds for one interrupt."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> int:
        """Consume every pending interrupt and return how many there were."""
        count = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return count
            count += 1


class SignalListener:
    """Forward SIGINT/SIGTERM to an ``InterruptChannel`` while active.

    Handlers can only be installed from the main thread; elsewhere the
    listener is inert and interrupts must be sent to the channel.
    """

    def __init__(self, channel: InterruptChannel, signals=(signal.SIGINT, signal.SIGTERM)):
        self.channel = channel
        self.signals = tuple(signals)
        self._previous: dict[int, object] = {}

    def _handle(self, signum, frame) -> None:
        self.channel.send(signum)

    def __enter__(self) -> SignalListener:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return self
        for signum in self.signals:
            self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, *exc) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()


def compose_env(
    global_env: dict[str, str],
    stack_env: dict[str, str],
    base: dict[str, str] | None = None,
) -> dict[str, str]:
    """Process env overlaid with project overrides, then stack overrides.

    ``${VAR}`` in an override value expands from ``base`` (unknown
    variables expand to an empty string).
    """
    base = dict(os.environ if base is None else base)

    def expand(value: str) -> str:
        return _VAR_RE.sub(lambda m: base.get(m.group(1), ""), value)

    env = dict(base)
    for overrides in (global_env, stack_env):
        for key, value in overrides.items():
            env[key] = expand(value)
    return env


class _Cancellation:
    """Interrupt bookkeeping shared by every stack of one run."""

    def __init__(self) -> None:
        self.interrupts = 0
        self.reason = ""

    @property
    def active(self) -> bool:
        return bool(self.reason)

    def cancel(self, reason: str) -> None:
        if not self.reason:
            self.reason = reason

    def interrupted(self, count: int = 1) -> int:
        self.interrupts += count
        self.cancel("execution interrupted")
        return self.interrupts


def run_stacks(
    order: list[Stack],
    command: list[str],
    options: RunOptions,
    interrupts: InterruptChannel | None = None,
    launcher: ProcessLauncher | None = None,
    hooks: StackRunHooks | None = None,
) -> RunReport:
    """Run ``command`` in each stack of ``order``.

    Args:
        order: Stacks in run order.
        command: Program and arguments.
        options: Run options (root, continue-on-error, dry-run, env).
        interrupts: Channel to watch for interrupts.
        launcher: Process launcher (default: ``ShellCommandAdapter``).
        hooks: Callbacks around each stack.

    Returns:
        RunReport with one receipt per stack, in run order.
    """
    if not command:
        raise ValueError("no command given")

    interrupts = interrupts or InterruptChannel()
    launcher = launcher or ShellCommandAdapter()
    hooks = hooks or StackRunHooks()

    report = RunReport(command=list(command), dry_run=options.dry_run)
    cancellation = _Cancellation()

    logger.info("Running %r in %d stacks", " ".join(command), len(order))

    for stack in order:
        pending = interrupts.drain()
        if pending:
            cancellation.interrupted(pending)

        if cancellation.active:
            receipt = Receipt.cancel(stack.path, cancellation.reason)
        elif options.dry_run:
            receipt = Receipt.skip(stack.path, "dry run")
        else:
            with stack_context(stack.path):
                receipt = _run_stack(stack, command, options, launcher, interrupts, cancellation, hooks)
            if receipt.failed and not options.continue_on_error:
                cancellation.cancel(f"stack {stack.path} failed")

        report.receipts.append(receipt)
        _log_receipt(receipt)
        hooks.finished(stack, receipt)

    logger.info(
        "Run %s: %d ok, %d failed, %d canceled, %d skipped",
        report.status, report.succeeded, report.failed, report.canceled, report.skipped,
    )
    return report


def _run_stack(
    stack: Stack,
    command: list[str],
    options: RunOptions,
    launcher: ProcessLauncher,
    interrupts: InterruptChannel,
    cancellation: _Cancellation,
    hooks: StackRunHooks,
) -> Receipt:
    receipt = Receipt(stack=stack.path)
    cwd = stack.host_dir(options.root)
    env = compose_env(options.env, stack.env, options.base_env)

    program = launcher.lookup(command[0], env, cwd)
    if program is None:
        receipt.finish(StackStatus.FAILED, exit_code=-1, error=f"command not found: {command[0]}")
        return receipt

    hooks.started(stack)
    receipt.mark_running()
    start = time.monotonic()

    try:
        proc = launcher.start([program, *command[1:]], cwd, env)
    except OSError as e:
        receipt.finish(StackStatus.FAILED, exit_code=-1, error=f"failed to start: {e}")
        return receipt

    interrupted = False
    deadline: float | None = None
    killed = False
    code: int | None = None

    while True:
        if code is None:
            code = proc.poll()
        # Once interrupted, wait for the whole group, not just the leader
        if code is not None and (not interrupted or killed or not proc.group_alive()):
            break

        signum = interrupts.receive(timeout=POLL_INTERVAL)
        if signum is not None:
            interrupted = True
            count = cancellation.interrupted()
            if count >= KILL_AFTER_INTERRUPTS:
                logger.warning("stack %s: interrupted %d times, killing", stack, count)
                proc.kill()
                killed = True
            else:
                logger.warning("stack %s: interrupted, terminating", stack)
                proc.terminate()
                if deadline is None:
                    deadline = time.monotonic() + options.grace_period
        elif deadline is not None and not killed and time.monotonic() >= deadline:
            logger.warning("stack %s: no exit within %.1fs, killing", stack, options.grace_period)
            proc.kill()
            killed = True

    elapsed_ms = int((time.monotonic() - start) * 1000)

    if interrupted:
        receipt.finish(StackStatus.CANCELED, exit_code=code, error="execution interrupted",
                       duration_ms=elapsed_ms)
    elif code == 0:
        receipt.finish(StackStatus.OK, exit_code=0, duration_ms=elapsed_ms)
    else:
        receipt.finish(StackStatus.FAILED, exit_code=code, error=f"exit code {code}",
                       duration_ms=elapsed_ms)
    return receipt


def _log_receipt(receipt: Receipt) -> None:
    marker = "✓" if receipt.ok else "✗" if receipt.failed else "⊘"
    logger.info(
        "  %s %s → %s (%dms)%s",
        marker,
        receipt.stack,
        receipt.status.value,
        receipt.duration_ms,
        f" — {receipt.error}" if receipt.error else "",
    )
