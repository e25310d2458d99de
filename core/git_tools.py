import os
from typing import Optional

# Import must succeed without a git binary; commands then raise CommandError.
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")

from git import Repo  # noqa: E402
from git.exc import CommandError, InvalidGitRepositoryError, NoSuchPathError  # noqa: E402
from core.exceptions import GitRepoError, GitWorktreeError, GitBranchError
from core.logging_utils import log_json


def find_repo_root(path: str = ".") -> Optional[str]:
    """Return the working-tree root containing *path*, or ``None`` if not under git."""
    try:
        return Repo(path, search_parent_directories=True).working_tree_dir
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None


class GitTools:
    def __init__(self, repo_path: str = None):
        try:
            # fallback to searching from current working dir
            self.repo = Repo(repo_path or ".", search_parent_directories=True)
            self.repo_root = self.repo.working_tree_dir

        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            log_json("ERROR", "git_repo_init_failed", details={"error": str(e), "repo_path": str(repo_path)})
            raise GitRepoError(
                f"Git repository not found. Run inside a repo or pass repo_path. ({e})"
            )

    def add_worktree(self, path: str, branch: str):
        """Creates a worktree at *path* checked out to a new *branch* from HEAD."""
        try:
            self.repo.git.worktree("add", "-b", branch, path, "HEAD")
            log_json("INFO", "git_worktree_added", details={"path": path, "branch": branch})
        except CommandError as e:
            log_json("ERROR", "git_worktree_add_failed", details={"error": str(e), "path": path, "branch": branch})
            raise GitWorktreeError(f"Failed to add worktree: {e}")

    def remove_worktree(self, path: str):
        """Force-removes the worktree at *path* and prunes stale worktree metadata."""
        try:
            self.repo.git.worktree("remove", "--force", path)
            self.repo.git.worktree("prune")
            log_json("INFO", "git_worktree_removed", details={"path": path})
        except CommandError as e:
            log_json("ERROR", "git_worktree_remove_failed", details={"error": str(e), "path": path})
            raise GitWorktreeError(f"Failed to remove worktree: {e}")

    def delete_branch(self, branch: str):
        """Force-deletes a local branch."""
        try:
            self.repo.git.branch("-D", branch)
            log_json("INFO", "git_branch_deleted", details={"branch": branch})
        except CommandError as e:
            log_json("ERROR", "git_branch_delete_failed", details={"error": str(e), "branch": branch})
            raise GitBranchError(f"Failed to delete branch: {e}")
