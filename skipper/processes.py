"""
External subcommand support: locating, launching and supervising executables.

A command registered with ``executable=True`` (or a file name) has no callback;
dispatching to it spawns ``<parent>-<child>`` from the program's directory,
passes the remaining tokens through, forwards termination signals while the
child runs, and reports the child's exit code back to the parent command.
"""
import contextlib
import logging
import os
import re
import signal
import subprocess
import sys
import threading

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (".py", ".pyw")

FORWARDED_SIGNALS = ("SIGUSR1", "SIGUSR2", "SIGTERM", "SIGINT", "SIGHUP")


def launch(argv, /):
    """Default launcher: start argv as a child process sharing our stdio."""
    logger.debug("spawning %r", argv)
    return subprocess.Popen(argv)


def find_executable(directory, name, /):
    """
    Look for name inside directory.

    The exact file wins; otherwise the source extensions are tried in order,
    unless name already carries one. Returns the path, or None.
    """
    path = os.path.join(directory, name)
    if os.path.exists(path):
        return path
    if os.path.splitext(path)[1] in SOURCE_EXTENSIONS:
        return None
    for extension in SOURCE_EXTENSIONS:
        if os.path.exists(path + extension):
            return path + extension
    return None


def interpreter_flags():
    """
    Interpreter options of the running process (sys.orig_argv minus sys.argv).

    The entry point selector ("-m module", "-c code") is not an option and is
    cut off with everything after it.
    """
    original = list(getattr(sys, "orig_argv", ()))
    if not original or len(original) < len(sys.argv):
        return []
    flags = original[1:len(original) - len(sys.argv)]
    for index, flag in enumerate(flags):
        if flag[:2] in ("-m", "-c"):
            return flags[:index]
    return flags


def increment_inspector_port(args, /):
    """
    Bump the debugger port in inspector flags so a child does not collide
    with the parent's debugger.

        >>> increment_inspector_port(["--inspect"])
        ['--inspect=127.0.0.1:9230']
        >>> increment_inspector_port(["--inspect-port=1.2.3.4:100"])
        ['--inspect-port=1.2.3.4:101']

    Port 0 means "pick any", so it is left alone, as is any other argument.
    """
    result = []
    for arg in args:
        if not arg.startswith("--inspect"):
            result.append(arg)
            continue

        option = None
        host = "127.0.0.1"
        port = "9229"
        if match := re.fullmatch(r"(--inspect(-brk)?)", arg):
            option = match[1]
        elif match := re.fullmatch(r"(--inspect(-brk|-port)?)=([^:]+)", arg):
            option = match[1]
            if re.fullmatch(r"\d+", match[3]):
                port = match[3]
            else:
                host = match[3]
        elif match := re.fullmatch(r"(--inspect(-brk|-port)?)=([^:]+):(\d+)", arg):
            option, host, port = match[1], match[3], match[4]

        if option and port != "0":
            result.append(f"{option}={host}:{int(port) + 1}")
        else:
            result.append(arg)
    return result


def describe_missing(file, subcommand, directory, /):
    """The diagnostic used when an executable subcommand cannot be found."""
    if directory:
        searched = f"searched for local subcommand relative to directory '{directory}'"
    else:
        searched = "no directory to search for local subcommand, use 'directory=' to supply a custom directory"
    return "\n".join((
        f"'{file}' does not exist",
        f" - if '{subcommand}' is not meant to be an executable command, drop 'executable=' and give it a callback",
        " - if the default executable name is not suitable, pass the file name or path as 'executable='",
        f" - {searched}",
    ))


@contextlib.contextmanager
def forward_signals(process, /):
    """
    Relay termination signals to process while the block runs.

    Handlers are only installed from the main thread; previous handlers are
    restored on exit.
    """
    if threading.current_thread() is not threading.main_thread():
        yield process
        return

    def relay(signum, frame):
        if process.poll() is None:
            process.send_signal(signum)

    previous = {}
    for name in FORWARDED_SIGNALS:
        if (signum := getattr(signal, name, None)) is not None:
            previous[signum] = signal.signal(signum, relay)
    try:
        yield process
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


__all__ = (
    "launch",
    "find_executable",
    "interpreter_flags",
    "increment_inspector_port",
    "describe_missing",
    "forward_signals",
)
