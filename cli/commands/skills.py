"""Skills CLI commands for skillmarket.

List installed skills and find the ones that fit a task.
"""

from typing import Optional

import typer
from rich.table import Table

from cli.skillmarket.context import exit_on_error, get_catalog
from cli.skillmarket.output import console, print_error, print_info
from settings.config import get_config

skills_app = typer.Typer(
    name="skills",
    help="Inspect installed skills and match them against tasks.",
    no_args_is_help=True,
)


@skills_app.command("list")
def list_skills() -> None:
    """List skills of all installed plugins."""
    with exit_on_error():
        skills = get_catalog().load()

    if not skills:
        print_info("No skills installed.")
        return

    table = Table(title="Installed Skills")
    table.add_column("Skill", style="cyan")
    table.add_column("Tools")
    table.add_column("Description")

    for skill in skills:
        desc = skill.trigger_description
        if len(desc) > 60:
            desc = desc[:57] + "..."
        table.add_row(skill.qualified_name, ", ".join(sorted(skill.allowed_tools)) or "-", desc)

    console.print(table)


@skills_app.command("match")
def match(
    task: str = typer.Argument(..., help="Task description"),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        help="Maximum number of skills (default: [matching] max_results)",
    ),
    strategy: Optional[str] = typer.Option(
        None,
        "--strategy",
        "-s",
        help="Scoring strategy: overlap or bm25",
    ),
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Minimum score (default: the strategy's own)",
    ),
    body: bool = typer.Option(
        False,
        "--body",
        "-b",
        help="Print the rendered skill context instead of a table",
    ),
    max_chars: Optional[int] = typer.Option(
        None,
        "--max-chars",
        help="Character budget for --body",
    ),
) -> None:
    """Find the installed skills relevant to a task.

    Examples:
        skillmarket skills match "refactor this React button component"
        skillmarket skills match "write a Strapi plugin" --strategy bm25
        skillmarket skills match "polish the settings page" --body --max-chars 4000
    """
    from skills.matcher import SkillMatcher, render_context

    settings = get_config().matching

    try:
        matcher = SkillMatcher(
            strategy=strategy or settings.strategy,
            threshold=threshold if threshold is not None else settings.threshold,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    with exit_on_error():
        skills = get_catalog().load()

    matches = matcher.rank(task, skills, limit=limit if limit is not None else settings.max_results)

    if not matches:
        print_info("No installed skill matches this task.")
        return

    if body:
        budget = max_chars if max_chars is not None else settings.max_context_chars
        console.print(
            render_context([m.skill for m in matches], max_chars=budget),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return

    table = Table(title=f"Skills for: {task}")
    table.add_column("#", justify="right")
    table.add_column("Skill", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Description")

    for rank, m in enumerate(matches, 1):
        desc = m.skill.trigger_description
        if len(desc) > 60:
            desc = desc[:57] + "..."
        table.add_row(str(rank), m.skill.qualified_name, f"{m.score:.3f}", desc)

    console.print(table)
