"""
Resolves how a script is launched based on its file extension.

Each known extension maps to a launch strategy: a callable that receives the
script path and its arguments and returns the full argv for subprocess.Popen.
Paths with an unknown extension are executed directly.
"""
import logging
from pathlib import PurePath
from typing import Callable, Dict, List, Optional, Sequence

log = logging.getLogger(__name__)

LaunchStrategy = Callable[[str, Sequence[str]], List[str]]


def interpreter(executable: str, *prefix_args: str) -> LaunchStrategy:
    """
    Builds a strategy that runs the script through an interpreter.

    :param executable: The interpreter to invoke (e.g. 'node').
    :param prefix_args: Arguments placed between the interpreter and the script (e.g. '/c').
    :return: A launch strategy.
    """
    def strategy(script_path: str, args: Sequence[str]) -> List[str]:
        return [executable, *prefix_args, script_path, *args]
    return strategy


def direct(script_path: str, args: Sequence[str]) -> List[str]:
    """Executes the path itself."""
    return [script_path, *args]


class LauncherRegistry:
    """A mapping from lower-case file extension to launch strategy."""

    def __init__(self, default: LaunchStrategy = direct) -> None:
        self._strategies: Dict[str, LaunchStrategy] = {}
        self.default = default

    def register(self, extension: str, strategy: LaunchStrategy) -> None:
        """
        Registers (or replaces) the strategy for an extension.

        :param extension: The file suffix, with or without the leading dot.
        :param strategy: The callable that builds the argv.
        """
        ext = self._normalize(extension)
        if not ext or ext == ".":
            raise ValueError("An extension is required to register a launcher.")
        self._strategies[ext] = strategy
        log.debug(f"Registered launcher for '{ext}'.")

    def unregister(self, extension: str) -> None:
        self._strategies.pop(self._normalize(extension), None)

    def get(self, extension: str) -> Optional[LaunchStrategy]:
        return self._strategies.get(self._normalize(extension))

    @property
    def extensions(self) -> List[str]:
        return sorted(self._strategies)

    def resolve(self, script_path: str, args: Sequence[str] = ()) -> List[str]:
        """
        Returns the argv used to launch the script.

        :param script_path: The script as given by the caller.
        :param args: The script's own arguments.
        :raises ValueError: If the script path is empty.
        """
        if not script_path:
            raise ValueError("Script path is required")
        strategy = self._strategies.get(PurePath(script_path).suffix.lower(), self.default)
        return strategy(script_path, list(args))

    @staticmethod
    def _normalize(extension: str) -> str:
        ext = extension.lower()
        return ext if ext.startswith(".") else f".{ext}"


def build_default_registry(config) -> LauncherRegistry:
    """
    Creates the registry for the script types the service knows how to run.

    :param config: The settings object providing the interpreter executables.
    """
    registry = LauncherRegistry()
    registry.register(".js", interpreter(config.NODE_EXECUTABLE))
    registry.register(".bat", interpreter(config.WINDOWS_COMMAND_SHELL, "/c"))
    registry.register(".cmd", interpreter(config.WINDOWS_COMMAND_SHELL, "/c"))
    registry.register(".py", interpreter(config.PYTHON_EXECUTABLE))
    registry.register(".sh", interpreter(config.SHELL_EXECUTABLE))
    return registry
