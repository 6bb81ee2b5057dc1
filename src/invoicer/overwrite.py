"""What to do when an output file already exists.

Policies (config spelling in parentheses):
    FORCE (Force)            replace the existing file
    RENAME_OLD (RenameOld)   move the existing file to <stem>_rev<N><ext>, write at the original path
    RENAME_NEW (RenameNew)   leave the existing file, write to <stem>_rev<timestamp><ext>
    SKIP (Skip)              write nothing

decide_overwrite() only looks at the filesystem; apply_decision() performs
the rename, so the decision logic is testable with a fake ``exists``.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger("invoicer.overwrite")

REVISION_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


class OverwritePolicy(str, Enum):
    FORCE = "Force"
    RENAME_OLD = "RenameOld"
    RENAME_NEW = "RenameNew"
    SKIP = "Skip"

    @classmethod
    def parse(cls, value: "str | OverwritePolicy") -> "OverwritePolicy":
        """Parse "RenameOld", "rename_old", "rename-old", ... into a policy."""
        if isinstance(value, cls):
            return value
        normalized = str(value).replace("_", "").replace("-", "").lower()
        for policy in cls:
            if policy.value.lower() == normalized:
                return policy
        choices = ", ".join(p.value for p in cls)
        raise ConfigError(f"Invalid overwrite policy {value!r} (expected one of {choices})")


class OverwriteAction(str, Enum):
    PROCEED = "proceed"
    RENAME_EXISTING = "rename_existing"
    RENAME_NEW = "rename_new"
    SKIP = "skip"


@dataclass(frozen=True)
class OverwriteDecision:
    action: OverwriteAction
    path: Path                   # requested output path
    suffix: str = ""
    renamed: Path | None = None  # new name of the existing file, or of the new file for RENAME_NEW

    @property
    def target(self) -> Path | None:
        """Where the new file gets written; None when skipping."""
        if self.action is OverwriteAction.SKIP:
            return None
        if self.action is OverwriteAction.RENAME_NEW:
            return self.renamed
        return self.path


def with_revision(path: Path, suffix: str) -> Path:
    """invoice.tex + "_rev2" -> invoice_rev2.tex"""
    return path.with_name(f"{path.stem}{suffix}{path.suffix}")


def _taken(path: Path, companions: Iterable[str], exists: Callable[[Path], bool]) -> bool:
    return exists(path) or any(exists(path.with_suffix(ext)) for ext in companions)


def decide_overwrite(
    path: Path,
    policy: OverwritePolicy,
    now: datetime,
    exists: Callable[[Path], bool] = Path.exists,
    companions: tuple[str, ...] = (),
) -> OverwriteDecision:
    """Decide how to write ``path`` under ``policy``.

    ``companions`` are extensions of files produced alongside path (e.g.
    ".pdf"); rename targets must be free for those as well.
    """
    if not exists(path) or policy is OverwritePolicy.FORCE:
        return OverwriteDecision(OverwriteAction.PROCEED, path)

    if policy is OverwritePolicy.SKIP:
        return OverwriteDecision(OverwriteAction.SKIP, path)

    if policy is OverwritePolicy.RENAME_OLD:
        revision = 1
        while True:
            suffix = f"_rev{revision}"
            candidate = with_revision(path, suffix)
            if not _taken(candidate, companions, exists):
                return OverwriteDecision(OverwriteAction.RENAME_EXISTING, path, suffix, candidate)
            revision += 1

    if policy is OverwritePolicy.RENAME_NEW:
        base = f"_rev{now.strftime(REVISION_TIMESTAMP_FORMAT)}"
        suffix = base
        attempt = 2
        while _taken(with_revision(path, suffix), companions, exists):
            suffix = f"{base}-{attempt}"
            attempt += 1
        return OverwriteDecision(OverwriteAction.RENAME_NEW, path, suffix, with_revision(path, suffix))

    raise ConfigError(f"Unhandled overwrite policy: {policy!r}")


def apply_decision(decision: OverwriteDecision, companions: tuple[str, ...] = ()) -> Path | None:
    """Carry out a decision; returns the path to write or None to skip."""
    if decision.action is OverwriteAction.SKIP:
        logger.info("%s exists, skipping", decision.path)
        return None

    if decision.action is OverwriteAction.RENAME_EXISTING:
        decision.path.rename(decision.renamed)
        logger.info("Renamed existing %s to %s", decision.path, decision.renamed.name)
        for ext in companions:
            companion = decision.path.with_suffix(ext)
            if companion.exists():
                companion.rename(decision.renamed.with_suffix(ext))
        return decision.path

    if decision.action is OverwriteAction.RENAME_NEW:
        logger.info("%s exists, writing %s instead", decision.path, decision.renamed.name)
        return decision.renamed

    return decision.path


def resolve_output_path(
    path: Path,
    policy: OverwritePolicy,
    now: datetime,
    companions: tuple[str, ...] = (),
) -> tuple[OverwriteDecision, Path | None]:
    """decide_overwrite() followed by apply_decision()."""
    decision = decide_overwrite(path, policy, now, companions=companions)
    return decision, apply_decision(decision, companions)
