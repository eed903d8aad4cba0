"""Calling the per-pass sync executor, plus the executor the CLI ships with.

The daemon treats an executor as an opaque, idempotent, zero-argument callable.
It may be synchronous or return an awaitable, and it reports a `SyncResult`
(or a `{"success": ..., "message": ...}` mapping).
"""

import asyncio
import inspect
import logging
import shlex
import subprocess
from collections.abc import Awaitable, Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed, wait
from typing import Any, Union

from .constants import APP_NAME
from .discovery import RepoDiscoverer
from .errors import ExecutorTimeoutError
from .models import Repository, RepoSyncStatus, SyncResult, utc_now

logger = logging.getLogger(APP_NAME)

ExecutorResult = Union[SyncResult, Mapping[str, Any]]
SyncExecutor = Callable[[], Union[ExecutorResult, Awaitable[ExecutorResult]]]


def _call(executor: SyncExecutor) -> SyncResult:
    outcome = executor()
    if inspect.isawaitable(outcome):
        outcome = asyncio.run(_await(outcome))
    return SyncResult.coerce(outcome)


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def invoke(executor: SyncExecutor, timeout: float | None = None) -> SyncResult:
    """Runs an executor once and normalizes its result.

    Args:
        executor (SyncExecutor): The callable to run.
        timeout (float | None): Seconds to wait before giving up. The executor
            is not killed on timeout; its thread is abandoned.

    Returns:
        SyncResult: The executor's outcome.

    Raises:
        ExecutorTimeoutError: If `timeout` elapses first.
        Exception: Whatever the executor raises.
    """
    if timeout is None:
        return _call(executor)

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fleet-sync-pass")
    try:
        future = pool.submit(_call, executor)
        done, _ = wait([future], timeout=timeout)
        if not done:
            logger.warning(
                f"EXECUTOR ABANDONED: still running after {timeout}s. "
                "It keeps running in the background and may overlap the next pass."
            )
            raise ExecutorTimeoutError(timeout)
        return future.result()
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


class CommandExecutor:
    """Discovers repositories and runs a command once for each of them.

    The command template is split with shell rules first and the placeholders
    (`{name}`, `{full_name}`, `{clone_url}`, `{ssh_url}`) are substituted per
    argument, so repository metadata is never interpreted by a shell. Without a
    command, every discovered repository is simply recorded as seen.

    Args:
        discoverer (RepoDiscoverer): Source of the repository list.
        command (str | None): The command template.
        max_workers (int): Parallel command invocations.
        command_timeout (float | None): Seconds allowed per repository.
    """

    def __init__(
        self,
        discoverer: RepoDiscoverer,
        command: str | None = None,
        max_workers: int = 4,
        command_timeout: float | None = None,
    ) -> None:
        self.discoverer = discoverer
        self.command = command
        self.max_workers = max(1, max_workers)
        self.command_timeout = command_timeout

    def build_args(self, repo: Repository) -> list[str]:
        """Expands the command template for one repository."""
        if not self.command:
            return []
        fields = {
            "name": repo.name,
            "full_name": repo.full_name,
            "clone_url": repo.clone_url,
            "ssh_url": repo.ssh_url,
        }
        return [part.format_map(fields) for part in shlex.split(self.command)]

    def sync_repository(self, repo: Repository) -> RepoSyncStatus:
        """Runs the command for one repository and records the outcome."""
        if not self.command:
            return RepoSyncStatus(
                last_sync=utc_now(), status="success", message="discovered"
            )

        args = self.build_args(repo)
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired:
            return RepoSyncStatus(
                last_sync=utc_now(),
                status="failed",
                message=f"Timed out after {self.command_timeout}s",
            )
        except OSError as e:
            return RepoSyncStatus(last_sync=utc_now(), status="failed", message=str(e))

        if proc.returncode == 0:
            lines = proc.stdout.strip().splitlines()
            return RepoSyncStatus(
                last_sync=utc_now(),
                status="success",
                message=lines[-1] if lines else "ok",
            )

        lines = (proc.stderr or proc.stdout).strip().splitlines()
        message = f"exit {proc.returncode}"
        if lines:
            message += f": {lines[-1]}"
        return RepoSyncStatus(last_sync=utc_now(), status="failed", message=message)

    def __call__(self) -> SyncResult:
        repos = self.discoverer.discover()
        results: dict[str, RepoSyncStatus] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self.sync_repository, repo): repo for repo in repos}
            for future in as_completed(futures):
                repo = futures[future]
                try:
                    results[repo.name] = future.result()
                except Exception as e:
                    logger.exception(f"REPO ERROR {repo.full_name}")
                    results[repo.name] = RepoSyncStatus(
                        last_sync=utc_now(), status="failed", message=str(e)
                    )

        failed = sorted(name for name, r in results.items() if r.status == "failed")
        if failed:
            return SyncResult(
                success=False,
                message=(
                    f"{len(failed)}/{len(results)} repositories failed: "
                    f"{', '.join(failed)}"
                ),
                repositories=results,
            )
        return SyncResult(
            success=True,
            message=f"{len(results)} repositories synced",
            repositories=results,
        )
