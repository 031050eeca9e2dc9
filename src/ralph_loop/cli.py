"""CLI entrypoint for the Ralph agent loop."""

import shutil
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from ralph_loop.config import ConfigError, load_config

# Load .env file on CLI startup
load_dotenv()


@click.group()
@click.version_option(package_name="ralph-loop")
def cli():
    """Ralph - run an AI coding agent in a loop until prd.json is done."""
    pass


@cli.command("run")
@click.argument("max_iterations", required=False, type=int)
@click.option(
    "--worker", "-w",
    default=None,
    help="Agent worker to run (default: cursor). See 'ralph workers'.",
)
@click.option(
    "--config", "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a ralph.yaml / ralph.json config file",
)
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Directory holding prd.json (default: searched upward from cwd)",
)
@click.option(
    "--prompt",
    type=click.Path(dir_okay=False),
    default=None,
    help="Prompt file sent to the agent each iteration (default: ./prompt.md)",
)
@click.option("--no-git", is_flag=True, help="Skip git branch setup")
@click.option(
    "--trace",
    is_flag=True,
    help="Run through the LangGraph wrapper for tracing visibility",
)
def run_cmd(
    max_iterations: Optional[int],
    worker: Optional[str],
    config_file: Optional[str],
    project_root: Optional[str],
    prompt: Optional[str],
    no_git: bool,
    trace: bool,
):
    """Run the agent loop.
    
    MAX_ITERATIONS: Productive iterations before giving up (default: 10).
    Connection-error retries do not count.
    
    Exit codes: 0 when the agent reports completion, 1 otherwise.
    
    \b
    Examples:
        ralph run                 # cursor, 10 iterations
        ralph run 20              # cursor, 20 iterations
        ralph run -w amp 15       # amp, 15 iterations
    """
    from ralph_loop.git_branch import GitError
    from ralph_loop.prerequisites import check_prerequisites
    from ralph_loop.runner import run_ralph
    from ralph_loop.workers import get_worker
    
    try:
        config = load_config(
            worker=worker,
            max_iterations=max_iterations,
            project_root=Path(project_root) if project_root else None,
            prompt_path=Path(prompt) if prompt else None,
            config_file=Path(config_file) if config_file else None,
            skip_git=True if no_git else None,
        )
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    
    missing = check_prerequisites(get_worker(config.worker))
    if missing:
        for dep in missing:
            click.echo(f"Error: {dep.message()}", err=True)
        raise SystemExit(1)
    
    try:
        final_state = run_ralph(config, use_graph=trace)
    except (ConfigError, GitError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except KeyboardInterrupt:
        click.echo("\nRun interrupted.", err=True)
        raise SystemExit(1)
    
    raise SystemExit(final_state.exit_code)


@cli.command("workers")
def list_workers():
    """List available agent workers."""
    from ralph_loop.workers import WORKERS
    
    click.echo(f"{'WORKER':<10} {'NAME':<14} {'COMMAND':<10} {'ON PATH':<8}")
    click.echo("-" * 45)
    for key, worker in WORKERS.items():
        found = "✓" if shutil.which(worker.executable) else "✗"
        click.echo(f"{key:<10} {worker.display_name:<14} {worker.executable:<10} {found:<8}")


@cli.command("check")
@click.option("--worker", "-w", default=None, help="Worker to check (default: configured worker)")
def check(worker: Optional[str]):
    """Check configuration and required commands."""
    from ralph_loop.prerequisites import check_prerequisites
    from ralph_loop.workers import get_worker
    
    try:
        config = load_config(worker=worker)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    
    click.echo("Configuration loaded successfully!")
    click.echo(f"  Worker: {config.worker}")
    click.echo(f"  Max iterations: {config.max_iterations}")
    click.echo(f"  Project root: {config.project_root}")
    click.echo(f"  Prompt: {config.prompt_path}")
    click.echo(f"  Retry base delay: {config.retry_base_delay_s:g}s")
    click.echo(f"  Iteration delay: {config.iteration_delay_s:g}s")
    
    problems = [dep.message() for dep in check_prerequisites(get_worker(config.worker))]
    if not config.prompt_path.is_file():
        problems.append(f"Prompt file not found: {config.prompt_path}")
    if not config.prd_path.is_file():
        click.echo(f"  Warning: no {config.prd_path.name} in project root")
    
    if problems:
        click.echo("")
        for problem in problems:
            click.echo(f"Error: {problem}", err=True)
        raise SystemExit(1)
    
    click.echo("All required commands found.")


@cli.command("status")
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Directory holding prd.json (default: searched upward from cwd)",
)
def status(project_root: Optional[str]):
    """Show PRD branch and story progress."""
    from ralph_loop.project import ProjectPaths, find_project_root, load_prd, story_summary
    
    root = Path(project_root).resolve() if project_root else find_project_root(Path.cwd())
    paths = ProjectPaths(root)
    
    try:
        data = load_prd(paths.prd)
    except (FileNotFoundError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    
    summary = story_summary(data)
    
    click.echo(f"Project: {data.get('project', root.name)}")
    click.echo(f"  Branch: {data.get('branchName') or 'N/A'}")
    click.echo(f"  Stories: {summary.passing}/{summary.total} passing")
    if summary.next_story:
        story = summary.next_story
        click.echo(f"  Next: {story.get('id', '?')} - {story.get('title', '')}")
    elif summary.total:
        click.echo("  ✓ All stories pass")
    if paths.last_branch.exists():
        click.echo(f"  Last run branch: {paths.last_branch.read_text().strip()}")


@cli.command("validate")
@click.argument("prd_file", required=False, type=click.Path(dir_okay=False))
def validate(prd_file: Optional[str]):
    """Validate the shape of prd.json.
    
    PRD_FILE: Path to prd.json (default: found from cwd)
    """
    from ralph_loop.project import ProjectPaths, find_project_root, load_prd, validate_prd
    
    path = Path(prd_file) if prd_file else ProjectPaths(find_project_root(Path.cwd())).prd
    
    try:
        data = load_prd(path)
    except (FileNotFoundError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    
    result = validate_prd(data, filename=path.name)
    if not result.is_valid:
        click.echo(f"✗ {path} is invalid:", err=True)
        for error in result.errors:
            click.echo(f"  - {error}", err=True)
        raise SystemExit(1)
    
    click.echo(f"✓ {path} is valid ({len(data['userStories'])} stories)")


if __name__ == "__main__":
    cli()
