"""Dolt CLI wrapper.

Every command runs as ``subprocess.run([...], cwd=repo_path, timeout=...)``
with an explicit working directory.  Nothing is cached between calls: the
current branch and HEAD commit are read from Dolt each time they are
needed, so branch switches performed outside the engine are always seen.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from ..codec.sql import sql_literal
from ..codec.terminal import strip_control_sequences
from ..codec.values import extract_text, parse_result_rows
from ..errors import (
    DoltCommandError,
    DoltExecutableNotFoundError,
    DoltTimeoutError,
    DuplicateRemoteError,
    NetworkError,
    NotInitializedError,
)

logger = logging.getLogger(__name__)

# Subdirectories of .dolt that only exist once storage was initialised
DOLT_STORAGE_MARKERS = ("noms", "chunks")

_NETWORK_FAILURE = re.compile(
    r"could not resolve|no such host|connection refused|network is unreachable"
    r"|i/o timeout|dial tcp|failed to get remote db",
    re.IGNORECASE,
)
_LOG_LINE = re.compile(r"^(?:commit\s+)?([0-9a-v]{7,40})\b\s*(.*)$")


def is_valid_dolt_dir(path: Path) -> bool:
    """Return True if *path* holds a ``.dolt`` directory with storage."""
    dolt_dir = path / ".dolt"
    if not dolt_dir.is_dir():
        return False
    return any((dolt_dir / marker).is_dir() for marker in DOLT_STORAGE_MARKERS)


@dataclass(frozen=True)
class DoltCommandResult:
    success: bool
    stdout: str
    stderr: str
    exit_code: int

    @property
    def output(self) -> str:
        """Stdout with colour codes and ref annotations removed."""
        return strip_control_sequences(self.stdout).strip()


@dataclass(frozen=True)
class CommitInfo:
    hash: str
    message: str


@dataclass(frozen=True)
class RemoteInfo:
    name: str
    url: str


class DoltCli:
    """Runs ``dolt`` commands against one repository directory.

    Args:
        repo_path: Repository directory (the one containing ``.dolt``).
        executable: Dolt binary name or path.
        command_timeout: Seconds before a local command is killed.
        network_timeout: Seconds before clone/push/pull/fetch is killed.
    """

    def __init__(
        self,
        repo_path: Path,
        executable: str = "dolt",
        command_timeout: float = 30.0,
        network_timeout: float = 300.0,
    ) -> None:
        self.repo_path = Path(repo_path)
        self.executable = executable
        self.command_timeout = command_timeout
        self.network_timeout = network_timeout

    def at(self, repo_path: Path) -> DoltCli:
        """Return a wrapper with the same settings for another directory."""
        return DoltCli(
            repo_path,
            executable=self.executable,
            command_timeout=self.command_timeout,
            network_timeout=self.network_timeout,
        )

    # ------------------------------------------------------------------
    # Process execution
    # ------------------------------------------------------------------

    def _run(
        self,
        *args: str,
        check: bool = False,
        network: bool = False,
        cwd: Path | None = None,
    ) -> DoltCommandResult:
        """Run one dolt command and capture its output.

        Raises:
            DoltExecutableNotFoundError: The binary could not be started.
            DoltTimeoutError: The command exceeded its timeout and was killed.
            NotInitializedError: The working directory does not exist.
            NetworkError: A network command failed to reach its remote.
            DoltCommandError: ``check`` is set and the exit code is non-zero.
        """
        workdir = cwd or self.repo_path
        if not workdir.is_dir():
            raise NotInitializedError(str(workdir))

        command = [self.executable, *args]
        timeout = self.network_timeout if network else self.command_timeout
        logger.debug("Running %s in %s", " ".join(command), workdir)
        try:
            completed = subprocess.run(
                command,
                cwd=workdir,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env={**os.environ, "NO_COLOR": "1"},
            )
        except FileNotFoundError:
            raise DoltExecutableNotFoundError(self.executable) from None
        except subprocess.TimeoutExpired:
            logger.error("Killed dolt %s after %gs", args[0] if args else "", timeout)
            raise DoltTimeoutError(command, timeout) from None

        result = DoltCommandResult(
            success=completed.returncode == 0,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=completed.returncode,
        )
        if not result.success:
            logger.debug(
                "dolt %s exited %d: %s",
                " ".join(args),
                result.exit_code,
                result.stderr.strip(),
            )
            if network and _NETWORK_FAILURE.search(result.stderr):
                raise NetworkError(
                    f"Remote unreachable: {strip_control_sequences(result.stderr).strip()}",
                    actions=["Check the remote URL and network connectivity"],
                )
            if check:
                raise DoltCommandError(
                    list(args), result.exit_code, strip_control_sequences(result.stderr)
                )
        return result

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def check_available(self) -> str:
        """Return the ``dolt version`` banner.

        Raises:
            DoltExecutableNotFoundError: If the binary cannot be run.
        """
        cwd = self.repo_path if self.repo_path.is_dir() else Path.cwd()
        result = self._run("version", check=True, cwd=cwd)
        return result.output

    def is_initialized(self) -> bool:
        return is_valid_dolt_dir(self.repo_path)

    def init(self, default_branch: str = "main") -> DoltCommandResult:
        self.repo_path.mkdir(parents=True, exist_ok=True)
        return self._run("init", "-b", default_branch, check=True)

    def clone(self, remote_url: str, branch: str | None = None) -> DoltCommandResult:
        """Clone *remote_url* into ``repo_path`` (which must not exist yet)."""
        parent = self.repo_path.parent
        parent.mkdir(parents=True, exist_ok=True)
        args = ["clone"]
        if branch:
            args += ["-b", branch]
        args += [remote_url, self.repo_path.name]
        return self._run(*args, check=True, network=True, cwd=parent)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def status(self) -> DoltCommandResult:
        return self._run("status")

    def has_uncommitted_changes(self) -> bool:
        rows = self.query("SELECT COUNT(*) AS n FROM dolt_status")
        return bool(rows) and int(rows[0].get("n") or 0) > 0

    def log(self, branch: str | None = None, limit: int | None = None) -> list[CommitInfo]:
        args = ["log", "--oneline"]
        if limit is not None:
            args += ["-n", str(limit)]
        if branch:
            args.append(branch)
        result = self._run(*args, check=True)
        commits = []
        for line in result.output.splitlines():
            match = _LOG_LINE.match(line.strip())
            if match:
                commits.append(CommitInfo(hash=match.group(1), message=match.group(2)))
        return commits

    def current_branch(self) -> str:
        rows = self.query("SELECT active_branch() AS branch")
        return extract_text(rows[0].get("branch")) if rows else ""

    def head_commit_hash(self) -> str | None:
        rows = self.query("SELECT HASHOF('HEAD') AS hash")
        if not rows:
            return None
        return strip_control_sequences(extract_text(rows[0].get("hash"))) or None

    def branches(self) -> list[str]:
        rows = self.query("SELECT name FROM dolt_branches ORDER BY name")
        return [extract_text(row.get("name")) for row in rows]

    def commit_exists_on_branch(self, commit_hash: str, branch: str) -> bool:
        rows = self.query(
            f"SELECT COUNT(*) AS n FROM dolt_log({sql_literal(branch)}) "
            f"WHERE commit_hash = {sql_literal(commit_hash)}"
        )
        return bool(rows) and int(rows[0].get("n") or 0) > 0

    # ------------------------------------------------------------------
    # Branches and commits
    # ------------------------------------------------------------------

    def checkout(self, ref: str, create: bool = False) -> DoltCommandResult:
        args = ["checkout", "-b", ref] if create else ["checkout", ref]
        return self._run(*args, check=True)

    def add(self, tables: Iterable[str] = ()) -> DoltCommandResult:
        names = list(tables)
        return self._run("add", *(names or ["-A"]), check=True)

    def commit(self, message: str, author: str | None = None) -> DoltCommandResult:
        args = ["commit", "-m", message]
        if author:
            args += ["--author", author]
        return self._run(*args)

    def merge(self, branch: str) -> DoltCommandResult:
        return self._run("merge", branch)

    def merge_abort(self) -> DoltCommandResult:
        return self._run("merge", "--abort", check=True)

    def conflicts_resolve(
        self, strategy: str, tables: Iterable[str] = ("documents",)
    ) -> DoltCommandResult:
        if strategy not in ("ours", "theirs"):
            raise ValueError(f"Unknown conflict strategy: {strategy}")
        return self._run("conflicts", "resolve", f"--{strategy}", *tables, check=True)

    def reset(self, target: str | None = None, hard: bool = False) -> DoltCommandResult:
        args = ["reset"]
        if hard:
            args.append("--hard")
        if target:
            args.append(target)
        return self._run(*args, check=True)

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    def remote_list(self) -> list[RemoteInfo]:
        rows = self.query("SELECT name, url FROM dolt_remotes ORDER BY name")
        return [
            RemoteInfo(name=extract_text(row.get("name")), url=extract_text(row.get("url")))
            for row in rows
        ]

    def remote_add(self, name: str, url: str) -> DoltCommandResult:
        if any(remote.name == name for remote in self.remote_list()):
            raise DuplicateRemoteError(name)
        return self._run("remote", "add", name, url, check=True)

    def remote_remove(self, name: str) -> DoltCommandResult:
        return self._run("remote", "remove", name, check=True)

    def push(self, remote: str, branch: str, set_upstream: bool = False) -> DoltCommandResult:
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        return self._run(*args, remote, branch, check=True, network=True)

    def pull(self, remote: str, branch: str | None = None) -> DoltCommandResult:
        args = ["pull", remote]
        if branch:
            args.append(branch)
        return self._run(*args, network=True)

    def fetch(self, remote: str, branch: str | None = None) -> DoltCommandResult:
        args = ["fetch", remote]
        if branch:
            args.append(branch)
        return self._run(*args, check=True, network=True)

    # ------------------------------------------------------------------
    # SQL
    # ------------------------------------------------------------------

    def query(self, sql: str) -> list[dict[str, Any]]:
        """Run a read query and return its rows.

        Raises:
            DoltCommandError: If the query fails or its output is unparseable.
        """
        result = self._run("sql", "-q", sql, "-r", "json", check=True)
        try:
            return parse_result_rows(result.stdout)
        except ValueError as exc:
            raise DoltCommandError(["sql", "-q", sql], result.exit_code, str(exc)) from exc

    def execute(self, statements: str | Iterable[str]) -> DoltCommandResult:
        """Run one or more write statements in a single ``dolt sql`` call."""
        if isinstance(statements, str):
            script = statements
        else:
            script = ";\n".join(statements)
        if not script.strip():
            return DoltCommandResult(success=True, stdout="", stderr="", exit_code=0)
        return self._run("sql", "-q", script, check=True)
