"""Configuration loading for the agent loop.

Precedence (lowest first): built-in defaults, ralph.yaml / ralph.json,
environment (including .env), explicit arguments.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from ralph_loop import constants
from ralph_loop.project import find_project_root
from ralph_loop.workers import UnknownWorkerError, get_worker


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class RunConfig:
    """Run configuration. Read once at start, never mutated."""
    
    worker: str
    max_iterations: int
    project_root: Path
    prompt_path: Path
    retry_base_delay_s: float = constants.RETRY_BASE_DELAY_S
    iteration_delay_s: float = constants.ITERATION_DELAY_S
    invoke_timeout_s: Optional[float] = None
    skip_git: bool = False

    @property
    def prd_path(self) -> Path:
        return self.project_root / constants.PRD_FILENAME

    @property
    def progress_path(self) -> Path:
        return self.project_root / constants.PROGRESS_FILENAME

    def read_prompt(self) -> str:
        if not self.prompt_path.is_file():
            raise ConfigError(f"Prompt file not found: {self.prompt_path}")
        return self.prompt_path.read_text()


ENV_KEYS = {
    "worker": "RALPH_WORKER",
    "max_iterations": "RALPH_MAX_ITERATIONS",
    "retry_base_delay_s": "RALPH_RETRY_BASE_DELAY_S",
    "iteration_delay_s": "RALPH_ITERATION_DELAY_S",
    "invoke_timeout_s": "RALPH_INVOKE_TIMEOUT_S",
}

FILE_KEYS = set(ENV_KEYS) | {"prompt_path", "skip_git"}


def load_config_file(config_file: Path) -> Dict[str, Any]:
    """
    Load a config file from YAML or JSON.
    
    Unknown keys are rejected so typos do not pass silently.
    """
    content = config_file.read_text()
    
    if config_file.suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e
    elif config_file.suffix == ".json":
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_file}: {e}") from e
    else:
        raise ConfigError(f"Unsupported config file type: {config_file.suffix}. Use .yaml, .yml, or .json")
    
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping")
    
    unknown = sorted(set(data) - FILE_KEYS)
    if unknown:
        raise ConfigError(f"Unknown config keys in {config_file}: {', '.join(unknown)}")
    
    return data


def find_config_file(*dirs: Path) -> Optional[Path]:
    """Return the first ralph.yaml / ralph.yml / ralph.json found in dirs."""
    for directory in dirs:
        for name in constants.CONFIG_FILENAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def _positive_int(name: str, value: Any) -> int:
    # Strings must be plain digits ("07" is fine); floats must be whole
    if isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        number = int(value.strip())
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, int) and not isinstance(value, bool):
        number = value
    else:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    if number < 1:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return number


def _non_negative_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return number


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_config(
    start_dir: Optional[Path] = None,
    worker: Optional[str] = None,
    max_iterations: Optional[int] = None,
    project_root: Optional[Path] = None,
    prompt_path: Optional[Path] = None,
    config_file: Optional[Path] = None,
    skip_git: Optional[bool] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunConfig:
    """
    Build the run configuration.
    
    Args:
        start_dir: Directory the run starts from (default: cwd). The prompt
                   lives here and the project root is searched upward from it.
        worker, max_iterations, project_root, prompt_path, skip_git:
                   Explicit overrides (None means not given).
        config_file: Explicit config file; otherwise ralph.yaml/.yml/.json
                     in start_dir or the project root is used if present.
        environ: Environment mapping (default: os.environ after load_dotenv).
    
    Raises:
        ConfigError: If any value is invalid or the worker is unknown.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ
    
    start = Path(start_dir or Path.cwd()).resolve()
    root = Path(project_root).resolve() if project_root else find_project_root(start)
    
    values: Dict[str, Any] = {
        "worker": constants.DEFAULT_WORKER,
        "max_iterations": constants.DEFAULT_MAX_ITERATIONS,
        "retry_base_delay_s": constants.RETRY_BASE_DELAY_S,
        "iteration_delay_s": constants.ITERATION_DELAY_S,
        "invoke_timeout_s": None,
        "prompt_path": None,
        "skip_git": False,
    }
    
    # Config file
    if config_file is not None:
        config_file = Path(config_file)
        if not config_file.is_file():
            raise ConfigError(f"Config file not found: {config_file}")
    else:
        config_file = find_config_file(start, root)
    if config_file is not None:
        values.update(load_config_file(config_file))
    
    # Environment
    for key, env_name in ENV_KEYS.items():
        env_value = environ.get(env_name)
        if env_value:
            values[key] = env_value
    
    # Explicit arguments
    overrides = {
        "worker": worker,
        "max_iterations": max_iterations,
        "prompt_path": prompt_path,
        "skip_git": skip_git,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    
    try:
        get_worker(str(values["worker"]))
    except UnknownWorkerError as e:
        raise ConfigError(str(e)) from e
    
    timeout = values["invoke_timeout_s"]
    if timeout is not None:
        timeout = _non_negative_float("invoke_timeout_s", timeout) or None
    
    if values["prompt_path"]:
        resolved_prompt = Path(values["prompt_path"])
        if not resolved_prompt.is_absolute():
            resolved_prompt = start / resolved_prompt
    else:
        resolved_prompt = start / constants.PROMPT_FILENAME
    
    return RunConfig(
        worker=str(values["worker"]),
        max_iterations=_positive_int("max_iterations", values["max_iterations"]),
        project_root=root,
        prompt_path=resolved_prompt,
        retry_base_delay_s=_non_negative_float("retry_base_delay_s", values["retry_base_delay_s"]),
        iteration_delay_s=_non_negative_float("iteration_delay_s", values["iteration_delay_s"]),
        invoke_timeout_s=timeout,
        skip_git=_flag(values["skip_git"]),
    )
