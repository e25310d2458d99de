import asyncio
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from git import Repo
from git.exc import GitCommandNotFound

from agents.sandbox import SandboxManager
from core.exceptions import GitWorktreeError, SandboxCleanupError, SandboxCreationError


def _init_repo(path: Path) -> Repo:
    repo = Repo.init(path)
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Test")
        cw.set_value("user", "email", "test@example.com")
    (path / "README.md").write_text("hello\n")
    repo.index.add([str(path / "README.md")])
    repo.index.commit("initial")
    return repo


class TestSandboxLifecycle(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._root = tempfile.mkdtemp()
        self.manager = SandboxManager(sandbox_root=self._root)

    def tearDown(self):
        shutil.rmtree(self._root, ignore_errors=True)

    async def test_concurrent_creation_yields_distinct_sandboxes(self):
        a, b = await asyncio.gather(self.manager.create_sandbox(), self.manager.create_sandbox())
        self.assertNotEqual(a.id, b.id)
        self.assertNotEqual(a.workspace_path, b.workspace_path)
        self.assertTrue(os.path.isdir(a.workspace_path))
        self.assertTrue(os.path.isdir(b.workspace_path))
        self.assertEqual(await self.manager.get_active_count(), 2)

    async def test_cleanup_removes_workspace_and_active_entry(self):
        sandbox = await self.manager.create_sandbox()
        before = await self.manager.get_active_count()
        await self.manager.cleanup_sandbox(sandbox)
        self.assertFalse(os.path.exists(sandbox.workspace_path))
        self.assertEqual(await self.manager.get_active_count(), before - 1)

    async def test_cleanup_all_empties_active_set(self):
        for _ in range(3):
            await self.manager.create_sandbox()
        cleaned = await self.manager.cleanup_all()
        self.assertEqual(cleaned, 3)
        self.assertEqual(await self.manager.get_active_count(), 0)

    async def test_sandbox_ids_have_expected_shape(self):
        sandbox = await self.manager.create_sandbox()
        self.assertTrue(sandbox.id.startswith("sandbox_"))
        self.assertEqual(sandbox.working_dir, sandbox.workspace_path)
        self.assertTrue(sandbox.isolated)
        self.assertFalse(sandbox.use_isolated_branch)

    async def test_creation_failure_raises_and_leaves_no_active_entry(self):
        with patch("agents.sandbox.tempfile.mkdtemp", side_effect=OSError("disk full")):
            with self.assertRaises(SandboxCreationError):
                await self.manager.create_sandbox()
        self.assertEqual(await self.manager.get_active_count(), 0)
        self.assertEqual(self.manager._pending, set())

    async def test_workspace_removal_failure_propagates_and_keeps_sandbox_active(self):
        sandbox = await self.manager.create_sandbox()
        with patch("agents.sandbox.shutil.rmtree", side_effect=PermissionError("busy")):
            with self.assertRaises(SandboxCleanupError):
                await self.manager.cleanup_sandbox(sandbox)
        self.assertEqual(await self.manager.get_active_count(), 1)

    async def test_cleanup_all_continues_past_failures(self):
        first = await self.manager.create_sandbox()
        await self.manager.create_sandbox()
        real_rmtree = shutil.rmtree

        def flaky(path, *args, **kwargs):
            if path == first.workspace_path:
                raise PermissionError("busy")
            return real_rmtree(path, *args, **kwargs)

        with patch("agents.sandbox.shutil.rmtree", side_effect=flaky):
            cleaned = await self.manager.cleanup_all()
        self.assertEqual(cleaned, 1)
        self.assertEqual(await self.manager.get_active_count(), 1)

    async def test_isolation_degrades_outside_git(self):
        outside = tempfile.mkdtemp()
        try:
            manager = SandboxManager(sandbox_root=self._root, repo_path=outside)
            with patch("agents.sandbox.find_repo_root", return_value=None):
                sandbox = await manager.create_sandbox(use_isolated_branch=True)
            self.assertFalse(sandbox.use_isolated_branch)
            self.assertIsNone(sandbox.worktree_path)
            self.assertTrue(os.path.isdir(sandbox.workspace_path))
            await manager.cleanup_sandbox(sandbox)
        finally:
            shutil.rmtree(outside, ignore_errors=True)

    async def test_isolation_degrades_without_git_binary(self):
        missing = GitCommandNotFound("git", OSError("No such file or directory"))
        with patch("agents.sandbox.find_repo_root", return_value="/repo"), \
                patch("core.git_tools.Repo") as MockRepo:
            MockRepo.return_value.git.worktree.side_effect = missing
            sandbox = await self.manager.create_sandbox(use_isolated_branch=True)
        self.assertFalse(sandbox.use_isolated_branch)
        self.assertTrue(os.path.isdir(sandbox.workspace_path))
        await self.manager.cleanup_sandbox(sandbox)

    async def test_unexpected_attach_failure_removes_workspace(self):
        with patch("agents.sandbox.find_repo_root", side_effect=RuntimeError("boom")):
            with self.assertRaises(SandboxCreationError):
                await self.manager.create_sandbox(use_isolated_branch=True)
        self.assertEqual(os.listdir(self._root), [])
        self.assertEqual(await self.manager.get_active_count(), 0)
        self.assertEqual(self.manager._pending, set())


@unittest.skipUnless(shutil.which("git"), "git executable not available")
class TestSandboxWorktrees(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._root = tempfile.mkdtemp()
        self.repo_dir = Path(tempfile.mkdtemp())
        self.repo = _init_repo(self.repo_dir)
        self.manager = SandboxManager(sandbox_root=self._root, repo_path=str(self.repo_dir))

    def tearDown(self):
        shutil.rmtree(self._root, ignore_errors=True)
        shutil.rmtree(self.repo_dir, ignore_errors=True)

    async def test_isolated_sandbox_gets_worktree_on_own_branch(self):
        sandbox = await self.manager.create_sandbox(use_isolated_branch=True)
        self.assertTrue(sandbox.use_isolated_branch)
        self.assertEqual(sandbox.branch, f"goalforge/sandbox-{sandbox.id}")
        self.assertTrue((Path(sandbox.worktree_path) / "README.md").is_file())
        self.assertIn(sandbox.branch, [h.name for h in self.repo.heads])

        await self.manager.cleanup_sandbox(sandbox)
        self.assertFalse(os.path.exists(sandbox.workspace_path))
        self.assertNotIn(sandbox.branch, [h.name for h in self.repo.heads])

    async def test_concurrent_worktrees_do_not_see_each_other(self):
        a, b = await asyncio.gather(
            self.manager.create_sandbox(use_isolated_branch=True),
            self.manager.create_sandbox(use_isolated_branch=True),
        )
        (Path(a.working_dir) / "only_a.txt").write_text("a")
        self.assertFalse((Path(b.working_dir) / "only_a.txt").exists())
        self.assertEqual(await self.manager.cleanup_all(), 2)

    async def test_git_failure_during_creation_degrades(self):
        with patch("agents.sandbox.GitTools.add_worktree", side_effect=GitWorktreeError("nope")):
            sandbox = await self.manager.create_sandbox(use_isolated_branch=True)
        self.assertFalse(sandbox.use_isolated_branch)
        await self.manager.cleanup_sandbox(sandbox)

    async def test_worktree_removal_failure_is_not_fatal(self):
        sandbox = await self.manager.create_sandbox(use_isolated_branch=True)
        with patch("agents.sandbox.GitTools.remove_worktree", side_effect=GitWorktreeError("locked")):
            await self.manager.cleanup_sandbox(sandbox)
        self.assertFalse(os.path.exists(sandbox.workspace_path))
        self.assertEqual(await self.manager.get_active_count(), 0)
        self.repo.git.worktree("prune")


if __name__ == "__main__":
    unittest.main()
