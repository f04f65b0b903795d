"""
Presentation functions for CLI output.

All print_* functions for Rich console output.
"""

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

ASSEMBLY_THEME = Theme(
    {
        "assembly.accent": "bold #5B8DEF",
        "assembly.meta": "dim",
        "assembly.intelligent": "bold green",
        "assembly.idiotic": "bold red",
        "assembly.error": "bold red",
    }
)

ASSEMBLY_BORDER_COLOR = "#5B8DEF"

# Shared console instance with assembly theme
console = Console(theme=ASSEMBLY_THEME)


def verdict_style(verdict: str | None) -> str:
    if verdict == "Intelligent":
        return "assembly.intelligent"
    if verdict == "Idiotic":
        return "assembly.idiotic"
    return "assembly.meta"


def print_resolution_header(title: str, body: str, delegates: list[str]) -> None:
    """Print the resolution panel and the delegates being consulted."""
    console.print()
    console.print(
        Panel(
            f"[bold]{title}[/bold]\n\n{body}",
            title="Resolution",
            border_style=ASSEMBLY_BORDER_COLOR,
        )
    )
    if delegates:
        console.print(f"[assembly.meta]Delegates: {', '.join(delegates)}[/assembly.meta]")
    console.print()


def build_delegate_panel(result: dict) -> Panel:
    """Build a panel for one delegate result, successful or failed."""
    name = result.get("displayName") or result["modelId"]

    if result.get("error"):
        return Panel(
            Text(f"Delegate call failed: {result['error']}", style="assembly.error"),
            title=f"[bold]{name}[/bold] [dim]• failed[/dim]",
            border_style="red",
            padding=(1, 2),
        )

    vote = result["vote"]
    title = (
        f"[bold]{name}[/bold] • [{verdict_style(vote)}]{vote}[/{verdict_style(vote)}] "
        f"[dim]{result['confidence']}%[/dim]"
    )
    if result.get("source") == "mock":
        title += " [dim]• offline[/dim]"

    content = result.get("argument") or ""
    if result.get("rebuttal"):
        content += f"\n\n*Rebuttal:* {result['rebuttal']}"

    return Panel(
        Markdown(content) if content.strip() else Text("(empty)", style="dim"),
        title=title,
        border_style="green" if vote == "Intelligent" else "red",
        padding=(1, 2),
    )


def print_debate(view: dict) -> None:
    """Display delegate results and the final verdict of a debate."""
    console.print("\n[bold cyan]━━━ DELEGATES ━━━[/bold cyan]\n")
    for result in view["delegateResults"]:
        console.print(build_delegate_panel(result))
        console.print()

    consensus = view["consensus"]
    style = verdict_style(consensus["verdict"])
    console.print("[bold cyan]━━━ VERDICT ━━━[/bold cyan]\n")
    console.print(
        Panel(
            f"[{style}]{consensus['verdict']}[/{style}]\n\n"
            f"Intelligent: {consensus['intelligentVotes']} ({consensus['intelligentPct']}%)\n"
            f"Idiotic: {consensus['idioticVotes']} ({consensus['idioticPct']}%)\n"
            f"[dim]Counted votes: {consensus['totalVotes']} of {len(view['delegateResults'])}[/dim]",
            title=f"[bold]Debate {view['id'][:8]}[/bold]",
            border_style="green" if consensus["verdict"] == "Intelligent" else "red",
            padding=(1, 2),
        )
    )
    console.print()


def print_delegates_table(delegates: list[dict]) -> None:
    """Print the delegate catalog ordered by rank."""
    table = Table(title="Eligible Delegates", show_header=True, header_style="assembly.accent")
    table.add_column("Rank", style="cyan", justify="center", width=6)
    table.add_column("Model", style="green")
    table.add_column("Name")
    table.add_column("Provider", style="assembly.meta")
    table.add_column("Weekly tokens", justify="right")

    for delegate in delegates:
        table.add_row(
            str(delegate.get("rank") or "-"),
            delegate["id"],
            delegate["displayName"],
            delegate["provider"],
            delegate.get("weeklyTokensText") or "n/a",
        )

    console.print(table)
    console.print()


def print_archive_table(items: list[dict]) -> None:
    """Print closed debates, newest first."""
    table = Table(title="Archive", show_header=True, header_style="assembly.accent")
    table.add_column("ID", style="assembly.accent", width=10)
    table.add_column("Title", style="white")
    table.add_column("Topic", width=12)
    table.add_column("Verdict", width=12)
    table.add_column("Split", justify="right", width=9)
    table.add_column("Created", style="assembly.meta", width=19)

    for item in items:
        consensus = item["consensus"]
        style = verdict_style(item["verdict"])
        table.add_row(
            item["id"][:8],
            item["title"],
            item["topic"],
            f"[{style}]{item['verdict']}[/{style}]",
            f"{consensus['intelligentPct']}/{consensus['idioticPct']}",
            item["createdAt"].replace("T", " ")[:19],
        )

    console.print(table)
    console.print()


def print_leaderboard_table(period: str, rows: list[dict]) -> None:
    """Print leaderboard standings for one period."""
    table = Table(
        title=f"Leaderboard ({period.replace('_', ' ')})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Rank", style="cyan", justify="center", width=6)
    table.add_column("Member", style="green")
    table.add_column("Title")
    table.add_column("Score", justify="right", width=6)
    table.add_column("Aligned", justify="right", width=9)
    table.add_column("Submissions", justify="right", width=11)

    for row in rows:
        table.add_row(
            str(row["rank"]),
            row["displayName"],
            row["title"],
            str(row["alignmentScore"]),
            f"{row['alignedVotes']}/{row['totalVotes']}",
            str(row["submissions"]),
        )

    console.print(table)
    console.print()


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[assembly.error]{message}[/assembly.error]")


def print_meta(message: str) -> None:
    """Print a meta message."""
    console.print(f"[assembly.meta]{message}[/assembly.meta]")
