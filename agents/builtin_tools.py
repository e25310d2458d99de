"""Built-in tools that operate inside a candidate's sandbox.

Every tool resolves paths against ``sandbox.working_dir`` through
:func:`core.sanitizer.sanitize_path`, so a plan cannot touch files outside its
own workspace.  ``shell`` only runs allowlisted commands.

Register them on a registry with :func:`register_builtin_tools`.
"""
import os
import shlex
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from core.exceptions import ToolError
from core.logging_utils import log_json
from core.sanitizer import sanitize_command, sanitize_path
from core.types import ResourceUsage


def _workdir(sandbox) -> Path:
    if sandbox is None:
        raise ToolError("Built-in tools require a sandbox.")
    return Path(sandbox.working_dir)


def make_shell_tool(allowed_commands: Optional[Iterable[str]] = None, timeout_s: int = 60):
    extra = list(allowed_commands or [])

    def shell(params: Dict[str, Any], sandbox) -> Dict[str, Any]:
        """Run an allowlisted command in the sandbox working directory."""
        cmd = params.get("command")
        argv = shlex.split(cmd) if isinstance(cmd, str) else list(cmd or [])
        sanitize_command(argv, extra_allowed=extra)
        cwd = _workdir(sandbox)
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=params.get("timeout_s", timeout_s),
                env={**os.environ, "PYTHONDONTWRITEBYTECODE": "1"},
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolError(f"Command timed out after {exc.timeout}s") from exc
        except FileNotFoundError as exc:
            raise ToolError(f"Command not found: {argv[0]}") from exc

        if proc.returncode != 0:
            log_json("DEBUG", "shell_tool_nonzero_exit",
                     details={"argv": argv, "exit_code": proc.returncode})
            raise ToolError(f"Command exited with {proc.returncode}: {proc.stderr.strip()[:300]}")
        return {"exit_code": proc.returncode, "stdout": proc.stdout, "stderr": proc.stderr}

    return shell


def write_file(params: Dict[str, Any], sandbox) -> Dict[str, Any]:
    """Write text content to a file inside the sandbox."""
    target = sanitize_path(params["path"], _workdir(sandbox))
    content = params.get("content", "")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    size_mb = len(content.encode("utf-8")) / (1024 * 1024)
    return {
        "path": str(target.relative_to(_workdir(sandbox).resolve())),
        "bytes": len(content.encode("utf-8")),
        "resources_used": ResourceUsage(storage_mb=size_mb),
    }


def read_file(params: Dict[str, Any], sandbox) -> Dict[str, Any]:
    """Read a text file from the sandbox."""
    target = sanitize_path(params["path"], _workdir(sandbox))
    if not target.is_file():
        raise ToolError(f"File not found: {params['path']}")
    return {"path": params["path"], "content": target.read_text(encoding="utf-8")}


def list_files(params: Dict[str, Any], sandbox) -> Dict[str, Any]:
    """List files under a sandbox directory (recursive)."""
    root = _workdir(sandbox).resolve()
    base = sanitize_path(params.get("path", "."), root)
    if not base.is_dir():
        raise ToolError(f"Not a directory: {params.get('path', '.')}")
    files = sorted(
        str(p.relative_to(root)) for p in base.rglob("*")
        if p.is_file() and ".git" not in p.relative_to(root).parts
    )
    return {"files": files}


def register_builtin_tools(registry, allowed_commands: Optional[Iterable[str]] = None,
                           shell_timeout_s: int = 60):
    """Register ``shell``, ``write_file``, ``read_file`` and ``list_files`` on *registry*."""
    registry.register("shell", make_shell_tool(allowed_commands, shell_timeout_s),
                      description="Run an allowlisted command in the sandbox")
    registry.register("write_file", write_file)
    registry.register("read_file", read_file)
    registry.register("list_files", list_files)
    return registry
