"""Shared visual constants and the end-of-run summary table."""

from __future__ import annotations

from rich.table import Table
from rich.text import Text

from repopack.sync import SyncReport

# ── Color Palette (GitHub Dark) ─────────────────────────────────────────

SURFACE = "#161b22"
MUTED = "#8b949e"

CYAN = "#58a6ff"
GREEN = "#39d353"
YELLOW = "#e3b341"
RED = "#f85149"

ICON_OK = "✔"
ICON_FAIL = "✘"
ICON_SKIP = "⤼"


def status_text(ok: bool) -> Text:
    """Green tick or red cross."""
    if ok:
        return Text(ICON_OK, style=f"bold {GREEN}")
    return Text(ICON_FAIL, style=f"bold {RED}")


def render_report(report: SyncReport) -> Table:
    """One row per repository, then one per skipped directory."""
    table = Table(border_style=SURFACE, show_edge=True, pad_edge=True)
    table.add_column("", no_wrap=True)
    table.add_column("Repo", style=f"bold {CYAN}")
    table.add_column("Branch", style=YELLOW)
    table.add_column("Remotes", style=MUTED)
    table.add_column("Source / Error", overflow="fold")

    for r in sorted(report.results, key=lambda r: r.name.lower()):
        if r.ok:
            remotes = ", ".join(rem.name for rem in r.remotes) or "—"
            detail = Text(r.source, style=MUTED)
        else:
            remotes = ""
            detail = Text(r.error or "", style=RED)
        table.add_row(status_text(r.ok), r.name, r.branch or "", remotes, detail)

    for s in report.skipped:
        table.add_row(
            Text(ICON_SKIP, style=f"bold {YELLOW}"),
            Text(s.path, style=YELLOW),
            "",
            "",
            Text(s.reason, style=MUTED),
        )

    table.caption = (
        f"{len(report.cloned)} cloned · {len(report.failed)} failed · "
        f"{len(report.skipped)} skipped"
    )
    return table
