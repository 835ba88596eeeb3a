"""Helpers for reading secrets from a KeePassXC database via ``keepassxc-cli``."""

from __future__ import annotations

import logging
import re
import sys
from typing import IO, Any, Sequence

from packaging.version import InvalidVersion, Version
from rich.console import Console

from .config import KeePassXCConfig
from .errors import CommandError, MissingConfigError, ParseError, PromptError
from .system import System

logger = logging.getLogger(__name__)

MAX_PASSWORD_LENGTH = 1024
SHOW_PROTECTED_VERSION = Version("2.5.1")

_PAIR_RE = re.compile(r"^([^:]+): (.*)$")


def read_password(prompt: str, *, stdin: IO[Any] | None = None, console: Console | None = None) -> str:
    """Read a password from the terminal, or byte-wise from a non-terminal ``stdin``.

    A non-terminal password ends at the first newline, or at end of input if
    at least one byte was read. Carriage returns are discarded.
    """

    stdin = stdin if stdin is not None else sys.stdin
    if stdin.isatty():
        console = console or Console(stderr=True)
        return console.input(prompt, password=True)

    stream = getattr(stdin, "buffer", stdin)
    password = bytearray()
    while True:
        byte = stream.read(1)
        if not byte:
            if password:
                return password.decode()
            raise PromptError("unexpected end of input while reading password")
        if byte == b"\r":
            continue
        if byte == b"\n":
            return password.decode()
        password += byte
        if len(password) > MAX_PASSWORD_LENGTH:
            raise PromptError("password too long")


def parse_show_output(output: bytes) -> dict[str, str]:
    """Parse ``keepassxc-cli show`` output into a mapping of field name to value.

    The first line is the entry title and is skipped.
    """

    data: dict[str, str] = {}
    for index, line in enumerate(output.decode().splitlines()):
        if index == 0 or not line.strip():
            continue
        match = _PAIR_RE.match(line)
        if match is None:
            raise ParseError(f"cannot parse {line!r}")
        data[match.group(1)] = match.group(2)
    return data


class KeePassXC:
    """Queries ``keepassxc-cli``, caching the version, password, and results.

    One instance is shared for the lifetime of the process; :meth:`reset`
    clears the caches.
    """

    def __init__(
        self,
        config: KeePassXCConfig,
        system: System,
        *,
        stdin: IO[Any] | None = None,
        console: Console | None = None,
    ) -> None:
        self.config = config
        self.system = system
        self.stdin = stdin
        self.console = console
        self.reset()

    def reset(self) -> None:
        self._version: Version | None = None
        self._password: str | None = None
        self._entries: dict[str, dict[str, str]] = {}
        self._attributes: dict[tuple[str, str], str] = {}

    def version(self) -> Version:
        if self._version is not None:
            return self._version
        args = [self.config.command, "--version"]
        output = self.system.idempotent_cmd_output(args)
        try:
            self._version = Version(output.decode().strip())
        except InvalidVersion as exc:
            raise ParseError(f"cannot parse version {output!r}") from exc
        logger.debug("%s version %s", self.config.command, self._version)
        return self._version

    def entry(self, entry: str) -> dict[str, str]:
        """Return every field of ``entry``."""

        if entry in self._entries:
            return self._entries[entry]
        args = self._show_args(entry)
        output = self._run(args)
        try:
            data = parse_show_output(output)
        except ParseError as exc:
            raise CommandError(args, exc) from exc
        self._entries[entry] = data
        return data

    def attribute(self, entry: str, attribute: str) -> str:
        """Return the single attribute ``attribute`` of ``entry``."""

        key = (entry, attribute)
        if key in self._attributes:
            return self._attributes[key]
        args = self._show_args(entry, ["--attributes", attribute, "--quiet"])
        value = self._run(args).decode().strip()
        self._attributes[key] = value
        return value

    def password(self) -> str:
        if self._password is None:
            database = self._database()
            self._password = read_password(
                f"Insert password to unlock {database}: ", stdin=self.stdin, console=self.console
            )
        return self._password

    def _database(self) -> str:
        if not self.config.database:
            raise MissingConfigError("keepassxc.database not set")
        return str(self.config.database)

    def _show_args(self, entry: str, extra: Sequence[str] = ()) -> list[str]:
        database = self._database()
        args = [self.config.command, "show"]
        if self.version() >= SHOW_PROTECTED_VERSION:
            args.append("--show-protected")
        args.extend(extra)
        args.extend(self.config.args)
        args.extend([database, entry])
        return args

    def _run(self, args: Sequence[str]) -> bytes:
        password = self.password()
        return self.system.idempotent_cmd_output(args, input=(password + "\n").encode())
