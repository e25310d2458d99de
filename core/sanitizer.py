import os
import re
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union
from core.exceptions import SecurityError

# Commands the built-in shell tool may run inside a sandbox.  Interpreters,
# git and sed are opt-in through ``allowed_commands``.
BASE_ALLOWED_COMMANDS = {
    "ls", "cat", "echo", "mkdir", "mv", "cp", "grep", "touch"
}

# Inline-code flags refused for opted-in interpreters, including attached forms like ``-cprint(1)``
INTERPRETERS = {"python", "python3"}
DANGEROUS_ARG_PREFIXES = ("-c", "-e", "--eval", "--exec")

# Regex for masking secrets (best-effort)
SECRET_PATTERNS = [
    re.compile(r"sk-[a-zA-Z0-9]{32,}", re.IGNORECASE), # Generic OpenAI/OpenRouter style
    re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE),
    re.compile(r"api[-_]?key", re.IGNORECASE) # Catch key names in dicts
]

def get_allowed_commands(extra: Optional[Iterable[str]] = None) -> set:
    """Returns the effective set of allowed commands: base + configured extras."""
    return BASE_ALLOWED_COMMANDS.union(set(extra or []))

def sanitize_path(file_path: Union[str, Path], root_dir: Union[str, Path]) -> Path:
    """
    Ensures path is safe and within the sandbox jail.
    Prevents path traversal attacks.
    """
    root = Path(root_dir).resolve()
    raw_target = Path(file_path)
    # Resolve relative paths against the declared jail root, not the process cwd.
    target = (root / raw_target).resolve() if not raw_target.is_absolute() else raw_target.resolve()

    try:
        target.relative_to(root)
    except ValueError as exc:
        raise SecurityError(f"Access denied: Path '{file_path}' escapes sandbox root '{root_dir}'.") from exc

    return target

def sanitize_command(cmd: List[str], extra_allowed: Optional[Iterable[str]] = None):
    """
    Validates shell commands against an allowlist.
    """
    if not cmd:
        raise SecurityError("Access denied: empty command.")

    allowed = get_allowed_commands(extra_allowed)
    base_cmd = os.path.basename(cmd[0])
    if base_cmd not in allowed:
        raise SecurityError(f"Access denied: Command '{base_cmd}' is not in the allowlist.")

    if base_cmd in INTERPRETERS:
        for arg in cmd[1:]:
            if arg.startswith(DANGEROUS_ARG_PREFIXES):
                raise SecurityError(f"Access denied: Dangerous argument '{arg}' in command.")

def mask_secrets(data: Any) -> Any:
    """
    Recursively redacts sensitive info from data.
    """
    if isinstance(data, dict):
        new_dict = {}
        for k, v in data.items():
            if any(p.search(str(k)) for p in SECRET_PATTERNS if "api" in p.pattern or "key" in p.pattern):
                new_dict[k] = "[REDACTED]"
            else:
                new_dict[k] = mask_secrets(v)
        return new_dict
    elif isinstance(data, (list, tuple)):
        return [mask_secrets(i) for i in data]
    elif isinstance(data, str):
        masked = data
        for p in SECRET_PATTERNS:
            # Mask the actual secret value if found in string
            if "sk-" in p.pattern or "Bearer" in p.pattern:
                masked = p.sub("[REDACTED]", masked)
        return masked
    return data
