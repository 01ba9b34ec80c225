"""
Git Agent
=========
Version-control capability used by the pipeline:

    fetch(branch)                 -> ref of the remote branch tip
    checkout(commit)              -> detached checkout of an exact commit (validation workspace)
    merge(target_ref, commit)     -> MergeOutcome (new ref | conflict)
    push(branch, ref)             -> True on success, False when rejected or timed out
    changed_paths(old_ref, new_ref) -> files touched between two refs

All operations run the `git` CLI in a local working clone. Merges are made on
a detached HEAD and pushed as `<ref>:refs/heads/<branch>`, so no local branch
is ever moved and the push is a plain non-forced update: if the remote target
moved since `fetch`, the push is rejected and the Promotion Stage retries.
"""
import subprocess
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from mergegate.core.config import (
    GIT_AUTHOR_EMAIL,
    GIT_AUTHOR_NAME,
    PUSH_TIMEOUT_SECONDS,
    REMOTE_NAME,
)
from mergegate.core.errors import GitCommandError

logger = logging.getLogger(__name__)

# Local commands (checkout, merge, diff) should never take long
_LOCAL_TIMEOUT = 60


@dataclass(frozen=True)
class MergeOutcome:
    ref: str = ""
    fast_forward: bool = False
    conflict: bool = False
    detail: str = ""


class VersionControl(Protocol):
    def fetch(self, branch: str) -> str: ...
    def checkout(self, commit: str) -> None: ...
    def merge(self, target_ref: str, commit: str, message: str = "") -> MergeOutcome: ...
    def push(self, branch: str, ref: str) -> bool: ...
    def changed_paths(self, old_ref: str, new_ref: str) -> List[str]: ...


class GitAgent:
    """
    Git CLI implementation of the version-control capability.
    """

    def __init__(
        self,
        repo_path: str,
        remote: str = REMOTE_NAME,
        network_timeout: int = PUSH_TIMEOUT_SECONDS,
    ) -> None:
        self.repo_path = repo_path
        self.remote = remote
        self.network_timeout = network_timeout

    def _git(self, args: List[str], timeout: Optional[int] = None) -> str:
        """Run a git command in the working clone and return stripped stdout."""
        command = ["git", *args]
        try:
            res = subprocess.run(
                command,
                cwd=self.repo_path,
                check=True,
                capture_output=True,
                text=True,
                timeout=timeout or _LOCAL_TIMEOUT,
            )
        except subprocess.CalledProcessError as e:
            raise GitCommandError(command, e.stderr or "")
        except subprocess.TimeoutExpired:
            raise GitCommandError(command, timed_out=True)
        return res.stdout.strip()

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------
    def fetch(self, branch: str) -> str:
        """Fetch `branch` from the remote and return its tip SHA."""
        remote_ref = f"refs/remotes/{self.remote}/{branch}"
        self._git(
            ["fetch", "--no-tags", self.remote, f"+refs/heads/{branch}:{remote_ref}"],
            timeout=self.network_timeout,
        )
        ref = self._git(["rev-parse", "--verify", f"{remote_ref}^{{commit}}"])
        logger.info("Fetched %s/%s at %s", self.remote, branch, ref[:12])
        return ref

    def checkout(self, commit: str) -> None:
        """
        Put the working clone on exactly `commit` (detached).

        Untracked files are removed but ignored ones (dependency caches,
        build output) are kept so repeated installs stay fast.
        """
        try:
            self._git(["cat-file", "-e", f"{commit}^{{commit}}"])
        except GitCommandError:
            # Not known locally yet: refresh all remote branches once
            self._git(["fetch", "--no-tags", "--prune", self.remote], timeout=self.network_timeout)
        self._git(["checkout", "--force", "--detach", commit])
        self._git(["clean", "-fd"])
        logger.info("Checked out %s for validation", commit[:12])

    def merge(self, target_ref: str, commit: str, message: str = "") -> MergeOutcome:
        """
        Merge `commit` onto `target_ref` without moving any branch.

        Fast-forward when `target_ref` is an ancestor of `commit`;
        otherwise create a merge commit. A conflicting merge is aborted and
        reported, never left half-applied.
        """
        if self._is_ancestor(commit, target_ref):
            logger.info("Commit %s already contained in target %s", commit[:12], target_ref[:12])
            return MergeOutcome(ref=target_ref, fast_forward=True, detail="already merged")

        if self._is_ancestor(target_ref, commit):
            return MergeOutcome(ref=commit, fast_forward=True)

        self._git(["checkout", "--force", "--detach", target_ref])
        try:
            self._git([
                "-c", f"user.name={GIT_AUTHOR_NAME}",
                "-c", f"user.email={GIT_AUTHOR_EMAIL}",
                "merge", "--no-ff", "--no-edit",
                "-m", message or f"Merge {commit[:12]}",
                commit,
            ])
        except GitCommandError as e:
            logger.warning("Merge of %s onto %s conflicted: %s", commit[:12], target_ref[:12], e)
            try:
                self._git(["merge", "--abort"])
            except GitCommandError:
                logger.warning("git merge --abort failed", exc_info=True)
            return MergeOutcome(conflict=True, detail=str(e))

        return MergeOutcome(ref=self._git(["rev-parse", "HEAD"]))

    def push(self, branch: str, ref: str) -> bool:
        """Non-forced push of `ref` to the remote branch. False when rejected."""
        try:
            self._git(
                ["push", "--porcelain", self.remote, f"{ref}:refs/heads/{branch}"],
                timeout=self.network_timeout,
            )
        except GitCommandError as e:
            logger.error("Push of %s to %s rejected: %s", ref[:12], branch, e)
            return False
        logger.info("Pushed %s to %s/%s", ref[:12], self.remote, branch)
        return True

    def changed_paths(self, old_ref: str, new_ref: str) -> List[str]:
        if not old_ref or old_ref == new_ref:
            return []
        out = self._git(["diff", "--name-only", old_ref, new_ref])
        return [line for line in out.splitlines() if line]

    def _is_ancestor(self, ancestor: str, descendant: str) -> bool:
        try:
            self._git(["merge-base", "--is-ancestor", ancestor, descendant])
            return True
        except GitCommandError:
            return False
