from __future__ import annotations

import json
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

# Lower-cased stderr fragments. Deleting something that is already gone is success.
NOT_FOUND_MARKERS = (
    "notfound",
    "not found",
    "does not exist",
    "nosuchentity",
)

TRANSIENT_MARKERS = (
    "throttling",
    "requestlimitexceeded",
    "toomanyrequests",
    "rate exceeded",
    "requesttimeout",
    "serviceunavailable",
    "the server is currently unable to handle the request",
)


class CliError(RuntimeError):
    pass


@dataclass(frozen=True)
class CliResult:
    rc: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.rc == 0

    @property
    def not_found(self) -> bool:
        err = (self.stderr or "").lower()
        return self.rc != 0 and any(m in err for m in NOT_FOUND_MARKERS)

    @property
    def transient(self) -> bool:
        err = (self.stderr or "").lower()
        return self.rc != 0 and any(m in err for m in TRANSIENT_MARKERS)

    def last_error_line(self) -> str:
        lines = (self.stderr or "").strip().splitlines()
        return lines[-1] if lines else ""


def fmt(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)


class CommandRunner:
    """Runs one external tool; subclasses fix the executable and its flags."""

    prefix: Sequence[str] = ()

    def __init__(self, *, env: Mapping[str, str] | None = None):
        self._env = dict(env) if env else None

    def _merged_env(self) -> Mapping[str, str] | None:
        if not self._env:
            return None
        merged = os.environ.copy()
        merged.update(self._env)
        return merged

    def command(self, args: Sequence[str]) -> list[str]:
        return [*self.prefix, *args]

    def run(self, args: Sequence[str]) -> CliResult:
        try:
            p = subprocess.run(
                self.command(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self._merged_env(),
            )
        except OSError as e:
            # Missing binary: report it like any other failed call.
            return CliResult(rc=127, stdout="", stderr=str(e))
        return CliResult(rc=p.returncode, stdout=p.stdout.strip(), stderr=p.stderr.strip())

    def json(self, args: Sequence[str]) -> Any:
        res = self.run([*args, *self.json_flags()])
        if res.rc != 0:
            raise CliError(f"{fmt(self.command(args))} failed: {res.stderr}")
        return None if not res.stdout else json.loads(res.stdout)

    def json_flags(self) -> Sequence[str]:
        return ()


class AwsCli(CommandRunner):
    prefix = ("aws",)

    def json_flags(self) -> Sequence[str]:
        return ("--output", "json")

    def text(self, args: Sequence[str]) -> str:
        res = self.run([*args, "--output", "text"])
        if res.rc != 0:
            raise CliError(f"aws {fmt(args)} failed: {res.stderr}")
        return res.stdout
