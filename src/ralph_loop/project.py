"""Project discovery and run bookkeeping around prd.json.

Finds the project root, keeps the progress log, and archives the previous
run when prd.json moves to a new branch.
"""

import json
import shutil
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional

import jsonschema

from ralph_loop import constants


@dataclass
class ProjectPaths:
    root: Path

    @property
    def prd(self) -> Path:
        return self.root / constants.PRD_FILENAME

    @property
    def progress(self) -> Path:
        return self.root / constants.PROGRESS_FILENAME

    @property
    def archive_dir(self) -> Path:
        return self.root / constants.ARCHIVE_DIRNAME

    @property
    def last_branch(self) -> Path:
        return self.root / constants.LAST_BRANCH_FILENAME


def find_project_root(start: Path, depth: int = constants.PROJECT_ROOT_SEARCH_DEPTH) -> Path:
    """
    Find the directory holding prd.json.
    
    Checks start, then up to `depth` parents. Falls back to start when no
    prd.json is found or the filesystem root is reached.
    """
    start = Path(start).resolve()
    candidate = start
    for _ in range(depth + 1):
        if (candidate / constants.PRD_FILENAME).is_file():
            return candidate
        if candidate.parent == candidate:
            return start
        candidate = candidate.parent
    return start


def load_prd(prd_path: Path) -> dict:
    """Load prd.json. Raises FileNotFoundError / ValueError."""
    if not prd_path.exists():
        raise FileNotFoundError(f"PRD not found: {prd_path}")
    try:
        data = json.loads(prd_path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {prd_path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{prd_path} must contain a JSON object")
    return data


def read_branch_name(prd_path: Path) -> Optional[str]:
    """Return branchName from prd.json, or None if missing or unreadable."""
    try:
        data = load_prd(prd_path)
    except (FileNotFoundError, ValueError):
        return None
    branch = data.get("branchName")
    if isinstance(branch, str) and branch.strip():
        return branch.strip()
    return None


def progress_header(worker_display_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return (
        "# Ralph Progress Log\n"
        f"Started: {now.strftime('%a %b %d %H:%M:%S %Y')}\n"
        f"Worker: {worker_display_name}\n"
        "---\n"
    )


def init_progress_file(
    progress_path: Path,
    worker_display_name: str,
    now: Optional[datetime] = None,
) -> bool:
    """Create the progress log if it does not exist. Returns True if created."""
    if progress_path.exists():
        return False
    progress_path.write_text(progress_header(worker_display_name, now))
    return True


def archive_folder_name(branch: str, today: date) -> str:
    if branch.startswith(constants.BRANCH_PREFIX):
        branch = branch[len(constants.BRANCH_PREFIX):]
    return f"{today.isoformat()}-{branch}"


def archive_previous_run(
    paths: ProjectPaths,
    worker_display_name: str,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Archive the previous run if prd.json now names a different branch.
    
    Copies prd.json and progress.txt to archive/<date>-<old branch>/ and
    starts a fresh progress log.
    
    Returns:
        The archive folder, or None if nothing was archived.
    """
    if not paths.prd.exists() or not paths.last_branch.exists():
        return None
    
    current_branch = read_branch_name(paths.prd)
    last_branch = paths.last_branch.read_text().strip()
    
    if not current_branch or not last_branch or current_branch == last_branch:
        return None
    
    folder = paths.archive_dir / archive_folder_name(last_branch, today or date.today())
    print(f"Archiving previous run: {last_branch}")
    folder.mkdir(parents=True, exist_ok=True)
    for source in (paths.prd, paths.progress):
        if source.exists():
            shutil.copy2(source, folder / source.name)
    print(f"   Archived to: {folder}")
    
    paths.progress.write_text(progress_header(worker_display_name, now))
    return folder


def record_last_branch(paths: ProjectPaths) -> Optional[str]:
    """Write the PRD's branch to .last-branch so the next run can compare."""
    branch = read_branch_name(paths.prd)
    if branch:
        paths.last_branch.write_text(branch + "\n")
    return branch


# =============================================================================
# PRD SHAPE
# =============================================================================

@dataclass
class ValidationResult:
    """Result of validating prd.json."""
    is_valid: bool
    errors: List[str]


STORY_SCHEMA = {
    "type": "object",
    "required": ["id", "title", "acceptanceCriteria", "priority", "passes"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "title": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "acceptanceCriteria": {
            "type": "array",
            "minItems": 1,
            "items": {"type": "string"},
        },
        "priority": {"type": "number"},
        "passes": {"type": "boolean"},
        "notes": {"type": "string"},
    },
}

PRD_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["project", "branchName", "userStories"],
    "properties": {
        "project": {"type": "string", "minLength": 1},
        "branchName": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "userStories": {
            "type": "array",
            "minItems": 1,
            "items": STORY_SCHEMA,
        },
    },
}


def validate_prd(data: Any, filename: str = constants.PRD_FILENAME) -> ValidationResult:
    """
    Validate prd.json against PRD_SCHEMA.
    
    Uses Draft7Validator.iter_errors() so every problem is reported,
    each with the path of the offending field.
    """
    errors: List[str] = []
    try:
        validator = jsonschema.Draft7Validator(PRD_SCHEMA)
        for error in validator.iter_errors(data):
            path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
            errors.append(f"{filename}: {error.message} at {path}")
    except jsonschema.SchemaError as e:
        errors.append(f"{filename}: Schema error - {e.message}")
    
    return ValidationResult(is_valid=not errors, errors=errors)


@dataclass
class StorySummary:
    total: int
    passing: int
    next_story: Optional[dict]

    @property
    def remaining(self) -> int:
        return self.total - self.passing


def story_summary(data: dict) -> StorySummary:
    """Count passing stories and pick the next pending one by priority."""
    stories = [s for s in data.get("userStories") or [] if isinstance(s, dict)]
    passing = [s for s in stories if s.get("passes") is True]
    pending = [s for s in stories if s.get("passes") is not True]
    pending.sort(key=lambda s: s.get("priority") if isinstance(s.get("priority"), (int, float)) else float("inf"))
    return StorySummary(
        total=len(stories),
        passing=len(passing),
        next_story=pending[0] if pending else None,
    )
