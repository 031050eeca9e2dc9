"""Put the working tree on the branch named in prd.json."""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List


class GitError(Exception):
    """Raised when a required git command fails."""
    pass


@dataclass
class BranchSetupResult:
    branch: str
    switched: bool = False
    created: bool = False
    base_branch: str = ""
    stashed: bool = False
    stash_restored: bool = False


class GitRunner:
    """Runs git in a fixed directory. `run` is swappable for tests."""

    def __init__(self, cwd: Path, run: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.cwd = cwd
        self._run = run

    def __call__(self, *args: str) -> subprocess.CompletedProcess:
        return self._run(
            ["git", *args],
            cwd=str(self.cwd),
            capture_output=True,
            text=True,
        )

    def ok(self, *args: str) -> bool:
        return self(*args).returncode == 0

    def check(self, *args: str) -> str:
        result = self(*args)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise GitError(f"git {' '.join(args)} failed: {detail}")
        return result.stdout


def current_branch(git: GitRunner) -> str:
    result = git("branch", "--show-current")
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def branch_exists(git: GitRunner, branch: str) -> bool:
    return git.ok("show-ref", "--verify", "--quiet", f"refs/heads/{branch}")


def has_uncommitted_changes(git: GitRunner) -> bool:
    return not git.ok("diff", "--quiet") or not git.ok("diff", "--cached", "--quiet")


def pick_base_branch(git: GitRunner, fallback: str) -> str:
    """main, else master, else the current branch."""
    for candidate in ("main", "master"):
        if branch_exists(git, candidate):
            return candidate
    return fallback


def setup_git_branch(
    project_root: Path,
    branch: str,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    echo: Callable[[str], None] = print,
) -> BranchSetupResult:
    """
    Check out `branch`, creating it if needed.
    
    Uncommitted changes (including untracked files) are stashed before the
    checkout and popped afterwards. A failed pop only warns.
    
    Raises:
        GitError: If the stash or checkout fails.
    """
    git = GitRunner(project_root, run=run)
    result = BranchSetupResult(branch=branch)
    
    on_branch = current_branch(git)
    if on_branch == branch:
        echo(f"✓ Already on branch: {branch}")
        return result
    
    echo(f"Setting up git branch: {branch}")
    
    if has_uncommitted_changes(git):
        echo("   Stashing uncommitted changes...")
        git.check("stash", "--include-untracked")
        result.stashed = True
    
    if branch_exists(git, branch):
        echo("   Switching to existing branch...")
        git.check("checkout", branch)
    else:
        base = pick_base_branch(git, on_branch)
        echo(f"   Creating new branch from {base}...")
        args: List[str] = ["checkout", "-b", branch]
        if base:
            args.append(base)
        git.check(*args)
        result.created = True
        result.base_branch = base
    result.switched = True
    
    if result.stashed:
        echo("   Restoring stashed changes...")
        if git.ok("stash", "pop"):
            result.stash_restored = True
        else:
            echo("   Warning: Could not restore stash (may be empty or conflicts)")
    
    echo(f"✓ Now on branch: {branch}")
    return result
