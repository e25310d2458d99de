"""Isolated execution workspaces for candidate plans.

:class:`SandboxManager` hands out one :class:`Sandbox` per candidate.  Every
sandbox gets a fresh temporary directory.  When isolation is requested and
the process runs inside a git repository, the sandbox additionally gets a
worktree checked out to its own branch (``<branch_prefix><sandbox id>``), so
concurrent candidates never see each other's file mutations.  Outside a
repository isolation degrades to the plain directory, with a warning.

Failure policy:

* workspace directory creation failure raises :class:`SandboxCreationError`
  (fatal for that candidate only);
* git failures during creation degrade isolation; during removal they are
  logged and ignored;
* workspace removal failure raises :class:`SandboxCleanupError`, because a
  leaked workspace is a resource leak.  The sandbox then stays registered as
  active so the leak remains visible.

Typical usage::

    manager = SandboxManager()
    sandbox = await manager.create_sandbox(use_isolated_branch=True)
    ...
    await manager.cleanup_sandbox(sandbox)
"""
from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from core.exceptions import GitToolsError, SandboxCleanupError, SandboxCreationError
from core.git_tools import GitTools, find_repo_root
from core.logging_utils import log_json

DEFAULT_BRANCH_PREFIX = "goalforge/sandbox-"
WORKTREE_DIRNAME = "worktree"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class Sandbox:
    """One isolated workspace.

    Attributes:
        id: Unique id, never reused while the sandbox is active.
        workspace_path: Temporary directory owned by this sandbox.
        use_isolated_branch: ``True`` when a git worktree backs the sandbox.
        isolated: ``True`` for every sandbox (directory isolation at minimum).
        branch: Branch checked out in the worktree, if any.
        worktree_path: Worktree location inside ``workspace_path``, if any.
        repo_root: Repository the worktree belongs to, if any.
    """

    id: str
    workspace_path: str
    use_isolated_branch: bool = False
    isolated: bool = True
    branch: Optional[str] = None
    worktree_path: Optional[str] = None
    repo_root: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def working_dir(self) -> str:
        """Directory tools should operate in."""
        return self.worktree_path or self.workspace_path

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "workspace_path": self.workspace_path,
            "use_isolated_branch": self.use_isolated_branch,
            "isolated": self.isolated,
            "branch": self.branch,
            "worktree_path": self.worktree_path,
            "created_at": self.created_at,
        }


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class SandboxManager:
    """Creates, tracks and destroys :class:`Sandbox` instances.

    Filesystem and git work runs on the default thread pool; the active set
    is guarded by its own asyncio lock.

    Args:
        sandbox_root: Parent directory for workspaces (``None`` = system temp).
        repo_path: Directory used to detect the repository for worktrees
            (``None`` = the process working directory).
        branch_prefix: Prefix for sandbox branch names.
    """

    def __init__(self, sandbox_root: Optional[str] = None, repo_path: Optional[str] = None,
                 branch_prefix: str = DEFAULT_BRANCH_PREFIX):
        self.sandbox_root = sandbox_root
        self.repo_path = repo_path
        self.branch_prefix = branch_prefix
        self._active: Dict[str, Sandbox] = {}
        self._pending: Set[str] = set()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_sandbox(self, use_isolated_branch: bool = False) -> Sandbox:
        async with self._lock:
            sandbox_id = self._new_id()
            # Reserve the id before leaving the lock so concurrent creations never collide.
            self._pending.add(sandbox_id)
        try:
            sandbox = await asyncio.to_thread(self._create_sync, sandbox_id, use_isolated_branch)
        except BaseException:
            async with self._lock:
                self._pending.discard(sandbox_id)
            raise
        async with self._lock:
            self._pending.discard(sandbox_id)
            self._active[sandbox_id] = sandbox
        log_json("INFO", "sandbox_created", details=sandbox.to_dict())
        return sandbox

    async def cleanup_sandbox(self, sandbox: Sandbox) -> None:
        await asyncio.to_thread(self._cleanup_sync, sandbox)
        async with self._lock:
            self._active.pop(sandbox.id, None)
        log_json("INFO", "sandbox_cleaned", details={"sandbox_id": sandbox.id})

    async def cleanup_all(self) -> int:
        """Clean every active sandbox; per-sandbox failures are logged.  Returns the number cleaned."""
        sandboxes = await self.list_active()
        cleaned = 0
        for sandbox in sandboxes:
            try:
                await self.cleanup_sandbox(sandbox)
                cleaned += 1
            except Exception as exc:
                log_json("ERROR", "sandbox_cleanup_failed",
                         details={"sandbox_id": sandbox.id, "error": str(exc)})
        return cleaned

    async def list_active(self) -> List[Sandbox]:
        async with self._lock:
            return list(self._active.values())

    async def get_active_count(self) -> int:
        async with self._lock:
            return len(self._active)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        while True:
            candidate = f"sandbox_{uuid.uuid4().hex[:12]}"
            if candidate not in self._active and candidate not in self._pending:
                return candidate

    def _create_sync(self, sandbox_id: str, use_isolated_branch: bool) -> Sandbox:
        try:
            if self.sandbox_root:
                Path(self.sandbox_root).mkdir(parents=True, exist_ok=True)
            workspace = tempfile.mkdtemp(prefix=f"goalforge_{sandbox_id}_", dir=self.sandbox_root)
        except OSError as exc:
            log_json("ERROR", "sandbox_workspace_create_failed",
                     details={"sandbox_id": sandbox_id, "error": str(exc)})
            raise SandboxCreationError(f"Could not create workspace for {sandbox_id}: {exc}") from exc

        sandbox = Sandbox(id=sandbox_id, workspace_path=workspace)
        if use_isolated_branch:
            try:
                self._attach_worktree(sandbox)
            except Exception as exc:
                log_json("ERROR", "sandbox_worktree_attach_failed",
                         details={"sandbox_id": sandbox_id, "error": str(exc)})
                shutil.rmtree(workspace, ignore_errors=True)
                raise SandboxCreationError(f"Could not prepare sandbox {sandbox_id}: {exc}") from exc
        return sandbox

    def _attach_worktree(self, sandbox: Sandbox) -> None:
        repo_root = find_repo_root(self.repo_path or os.getcwd())
        if repo_root is None:
            log_json("WARN", "sandbox_isolation_degraded",
                     details={"sandbox_id": sandbox.id, "reason": "not a git repository"})
            return
        branch = f"{self.branch_prefix}{sandbox.id}"
        worktree_path = str(Path(sandbox.workspace_path) / WORKTREE_DIRNAME)
        try:
            GitTools(repo_root).add_worktree(worktree_path, branch)
        except GitToolsError as exc:
            log_json("WARN", "sandbox_isolation_degraded",
                     details={"sandbox_id": sandbox.id, "reason": str(exc)})
            return
        sandbox.use_isolated_branch = True
        sandbox.branch = branch
        sandbox.worktree_path = worktree_path
        sandbox.repo_root = repo_root

    def _cleanup_sync(self, sandbox: Sandbox) -> None:
        if sandbox.use_isolated_branch and sandbox.repo_root:
            try:
                git = GitTools(sandbox.repo_root)
                git.remove_worktree(sandbox.worktree_path)
                git.delete_branch(sandbox.branch)
            except GitToolsError as exc:
                log_json("WARN", "sandbox_worktree_remove_failed",
                         details={"sandbox_id": sandbox.id, "error": str(exc)})

        try:
            shutil.rmtree(sandbox.workspace_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log_json("ERROR", "sandbox_workspace_leaked",
                     details={"sandbox_id": sandbox.id, "path": sandbox.workspace_path, "error": str(exc)})
            raise SandboxCleanupError(
                f"Could not remove workspace {sandbox.workspace_path}: {exc}"
            ) from exc
