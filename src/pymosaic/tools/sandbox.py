from __future__ import annotations

import os
from pathlib import Path


class PathSecurityError(RuntimeError):
    def __init__(self, message: str, *, target: str = "", resolved: Path | None = None, root: Path | None = None):
        super().__init__(message)
        self.target = target
        self.resolved = resolved
        self.root = root


def _normalize(p: Path) -> Path:
    # resolve() follows symlinks so a link inside the workspace cannot point out of it.
    return Path(os.path.normpath(p.expanduser())).resolve()


def _is_within(path: Path, base: Path) -> bool:
    return path == base or base in path.parents


class PathSandbox:
    """Authorizes filesystem paths against a workspace root plus an allow-list.

    The allow-list only grows when a tool creates a *new* directory outside the
    workspace. Existing external directories are never admitted, and reading
    never admits anything.
    """

    def __init__(self, root: str | Path):
        self.root = _normalize(Path(root))
        self._allowed: set[Path] = set()

    def resolve(self, target: str | Path) -> Path:
        p = Path(target).expanduser()
        if not p.is_absolute():
            p = self.root / p
        return _normalize(p)

    def validate(self, target: str | Path) -> Path:
        resolved = self.resolve(target)
        if _is_within(resolved, self.root):
            return resolved
        for allowed in self._allowed:
            if _is_within(resolved, allowed):
                return resolved
        raise PathSecurityError(
            f'Access denied: Path "{target}" resolves to "{resolved}" which is outside the '
            f'workspace "{self.root}". The agent can only access files within the workspace '
            "or directories it has created.",
            target=str(target),
            resolved=resolved,
            root=self.root,
        )

    def is_safe(self, target: str | Path) -> bool:
        try:
            self.validate(target)
        except PathSecurityError:
            return False
        return True

    def can_write(self, target: str | Path) -> bool:
        """Whether admit_for_write would accept `target`, without creating anything."""
        if self.is_safe(target):
            return True
        return not self.resolve(target).parent.exists()

    def can_create_directory(self, target: str | Path) -> bool:
        """Whether admit_new_directory would accept `target`, without creating anything."""
        if self.is_safe(target):
            return True
        return not self.resolve(target).exists()

    def allow_path(self, path: str | Path) -> None:
        self._allowed.add(_normalize(Path(path)))

    def disallow_path(self, path: str | Path) -> None:
        self._allowed.discard(_normalize(Path(path)))

    def allowed_paths(self) -> list[Path]:
        return sorted(self._allowed)

    def clear_allowed_paths(self) -> None:
        self._allowed.clear()

    def admit_for_write(self, target: str | Path) -> Path:
        """Authorize a file write, creating and admitting a new external parent.

        Raises PathSecurityError when the target is outside the boundary and its
        parent directory already exists, even if the file itself does not.
        """
        try:
            return self.validate(target)
        except PathSecurityError:
            resolved = self.resolve(target)
            parent = resolved.parent
            if parent.exists():
                raise PathSecurityError(
                    "Cannot create files in existing external directories. "
                    f'"{parent}" is outside the workspace "{self.root}"; only directories '
                    "created by the agent are allowed.",
                    target=str(target),
                    resolved=resolved,
                    root=self.root,
                ) from None
            parent.mkdir(parents=True, exist_ok=True)
            self.allow_path(parent)
            return resolved

    def admit_new_directory(self, target: str | Path) -> Path:
        """Authorize directory creation; a new external directory joins the allow-list."""
        try:
            return self.validate(target)
        except PathSecurityError:
            resolved = self.resolve(target)
            if resolved.exists():
                raise PathSecurityError(
                    f'Cannot use existing external directory "{resolved}": it is outside the '
                    f'workspace "{self.root}" and was not created by the agent.',
                    target=str(target),
                    resolved=resolved,
                    root=self.root,
                ) from None
            resolved.mkdir(parents=True, exist_ok=True)
            self.allow_path(resolved)
            return resolved
