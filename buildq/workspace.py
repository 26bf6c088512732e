"""Project tree: snapshots, atomic mutation sets, single-writer guard."""

from __future__ import annotations

import difflib
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath

import anyio

from .errors import ConcurrentEditError, MutationApplyFailure
from .models import FileChanges

logger = logging.getLogger(__name__)

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "dist", "build"}
_TMP_PREFIX = ".buildq-"


# -------------------------------------------------------------------
# Validation & diff
# -------------------------------------------------------------------

def normalize_path(path: str) -> str:
    """Return a clean relative POSIX path or raise MutationApplyFailure."""
    if not isinstance(path, str) or not path.strip():
        raise MutationApplyFailure(f"Invalid file path: {path!r}")
    p = PurePosixPath(path.strip().replace("\\", "/"))
    if p.is_absolute() or ".." in p.parts:
        raise MutationApplyFailure(f"Path escapes the project: {path}")
    return str(p)


def validate_changes(changes: FileChanges, existing: set[str]) -> FileChanges:
    """Check a mutation set against the current tree; return it with clean paths.

    create needs an absent path, update and delete need a present one, and a
    path may appear in only one of the three.
    """
    create = {normalize_path(p): c for p, c in changes.create.items()}
    update = {normalize_path(p): c for p, c in changes.update.items()}
    delete = [normalize_path(p) for p in changes.delete]

    seen: dict[str, str] = {}
    for op, paths in (("create", create), ("update", update), ("delete", delete)):
        for path in paths:
            if path in seen:
                raise MutationApplyFailure(
                    f"{path} appears in both '{seen[path]}' and '{op}'"
                )
            seen[path] = op

    for path, content in [*create.items(), *update.items()]:
        if not isinstance(content, str):
            raise MutationApplyFailure(f"Content for {path} is not text")
        try:
            content.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise MutationApplyFailure(
                f"Content for {path} is not valid UTF-8: {exc.reason}"
            ) from exc
    for path in create:
        if path in existing:
            raise MutationApplyFailure(f"Cannot create {path}: file already exists")
    for path in [*update, *delete]:
        if path not in existing:
            raise MutationApplyFailure(f"Cannot modify {path}: no such file")

    return FileChanges(create=create, update=update, delete=delete)


def unified_diff(before: dict[str, str], after: dict[str, str]) -> str:
    """Unified diff of two snapshots, one file section per changed path."""
    parts: list[str] = []
    for path in sorted(set(before) | set(after)):
        old = before.get(path)
        new = after.get(path)
        if old == new:
            continue
        for line in difflib.unified_diff(
            (old or "").splitlines(keepends=True),
            (new or "").splitlines(keepends=True),
            fromfile=f"a/{path}" if old is not None else "/dev/null",
            tofile=f"b/{path}" if new is not None else "/dev/null",
        ):
            # files without a trailing newline
            parts.append(line if line.endswith("\n") else line + "\n")
    return "".join(parts)


# -------------------------------------------------------------------
# Trees
# -------------------------------------------------------------------

class ProjectTree:
    """Base tree with the single-writer guard.

    While a run holds the tree, manual edits raise ConcurrentEditError;
    the orchestrator is the only writer.
    """

    def __init__(self):
        self._owner: str | None = None

    @property
    def locked(self) -> bool:
        return self._owner is not None

    def acquire(self, owner: str) -> None:
        if self._owner is not None and self._owner != owner:
            raise ConcurrentEditError(f"Project tree is held by run {self._owner}")
        self._owner = owner

    def release(self, owner: str) -> None:
        if self._owner == owner:
            self._owner = None

    async def snapshot(self) -> dict[str, str]:
        raise NotImplementedError

    async def apply(self, changes: FileChanges) -> list[str]:
        """Apply all of ``changes`` or none of them. Returns touched paths."""
        raise NotImplementedError

    async def write(self, path: str, content: str) -> None:
        """Manual (human) edit of a single file."""
        if self.locked:
            raise ConcurrentEditError(
                f"Manual edits are disabled while run {self._owner} is active"
            )
        existing = set(await self.snapshot())
        path = normalize_path(path)
        if path in existing:
            changes = FileChanges(update={path: content})
        else:
            changes = FileChanges(create={path: content})
        await self.apply(changes)


class MemoryTree(ProjectTree):
    """In-memory tree, mostly for tests and embedding."""

    def __init__(self, files: dict[str, str] | None = None):
        super().__init__()
        self.files: dict[str, str] = dict(files or {})

    async def snapshot(self) -> dict[str, str]:
        return dict(self.files)

    async def apply(self, changes: FileChanges) -> list[str]:
        clean = validate_changes(changes, set(self.files))
        staged = dict(self.files)
        for path in clean.delete:
            del staged[path]
        staged.update(clean.update)
        staged.update(clean.create)
        self.files = staged
        return clean.touched()


class DirectoryTree(ProjectTree):
    """Tree backed by a project directory on disk."""

    def __init__(self, root: str | Path, exclude: tuple[str, ...] = ()):
        super().__init__()
        self.root = Path(root)
        self.exclude = set(exclude)

    def _excluded(self, rel: str) -> bool:
        if rel in self.exclude:
            return True
        parts = PurePosixPath(rel).parts
        if any(part in _SKIP_DIRS for part in parts[:-1]):
            return True
        if parts[-1].startswith(_TMP_PREFIX):
            return True
        # .buildq holds config, credentials and the journal; only notes are project content
        return parts[0] == ".buildq" and not rel.endswith(".md")

    def _read_all(self) -> dict[str, str]:
        files: dict[str, str] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in _SKIP_DIRS]
            for name in filenames:
                full = Path(dirpath) / name
                rel = full.relative_to(self.root).as_posix()
                if self._excluded(rel):
                    continue
                try:
                    files[rel] = full.read_text(encoding="utf-8")
                except (UnicodeDecodeError, OSError):
                    logger.debug("skipping unreadable file %s", rel)
        return files

    async def snapshot(self) -> dict[str, str]:
        return await anyio.to_thread.run_sync(self._read_all)

    async def apply(self, changes: FileChanges) -> list[str]:
        existing = set(await self.snapshot())
        clean = validate_changes(changes, existing)
        # The snapshot hides internal and unreadable files; check the disk too
        for path in clean.touched():
            if self._excluded(path):
                raise MutationApplyFailure(f"Cannot modify {path}: not part of the project")
        for path in clean.create:
            if (self.root / path).exists():
                raise MutationApplyFailure(f"Cannot create {path}: file already exists")
        await anyio.to_thread.run_sync(self._commit, clean)
        return clean.touched()

    def _commit(self, changes: FileChanges) -> None:
        writes = {**changes.update, **changes.create}
        staged: dict[str, str] = {}
        created_dirs: list[Path] = []
        backups: dict[str, bytes | None] = {}
        try:
            # Phase 1: stage every write next to its target
            for rel, content in writes.items():
                target = self.root / rel
                for parent in reversed(target.parents):
                    if not parent.exists() and self.root in parent.parents:
                        parent.mkdir()
                        created_dirs.append(parent)
                fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=_TMP_PREFIX)
                staged[rel] = tmp
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(content)

            # Phase 2: swap staged files in, remember originals for rollback
            for rel, tmp in staged.items():
                target = self.root / rel
                backups[rel] = target.read_bytes() if target.exists() else None
                os.replace(tmp, target)
            for rel in changes.delete:
                target = self.root / rel
                backups[rel] = target.read_bytes()
                target.unlink()
        except (OSError, UnicodeError) as exc:
            self._rollback(backups, staged, created_dirs)
            raise MutationApplyFailure(f"Failed to apply file changes: {exc}") from exc

    def _rollback(
        self,
        backups: dict[str, bytes | None],
        staged: dict[str, str],
        created_dirs: list[Path],
    ) -> None:
        for rel, original in backups.items():
            target = self.root / rel
            try:
                if original is None:
                    target.unlink(missing_ok=True)
                else:
                    target.write_bytes(original)
            except OSError:
                logger.error("rollback failed for %s", rel)
        for tmp in staged.values():
            Path(tmp).unlink(missing_ok=True)
        for d in reversed(created_dirs):
            try:
                d.rmdir()
            except OSError:
                logger.debug("could not remove %s during rollback", d)
