import os

# Collection must work on hosts without a git binary; worktree tests skip themselves there.
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")
