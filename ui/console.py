from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.classifier import region_tier
from models.types import SchemaType, Segment, TrendDirection
from utils.logger import setup_logger

logger = setup_logger("UI")

SPARK_CHARS = "▁▂▃▄▅▆▇█"

TIER_STYLES = {
    "Unknown": "dim white",
    "Low": "yellow",
    "Optimal": "bold green",
    "High": "bold magenta",
}


def sparkline(values: List[float], width: int = 60) -> str:
    if not values:
        return ""
    if len(values) > width > 1:
        # Sample evenly, always keeping the last value
        step = (len(values) - 1) / (width - 1)
        values = [values[round(i * step)] for i in range(width)]
    lo, hi = min(values), max(values)
    if hi == lo:
        return SPARK_CHARS[len(SPARK_CHARS) // 2] * len(values)
    scale = (len(SPARK_CHARS) - 1) / (hi - lo)
    return "".join(SPARK_CHARS[int((v - lo) * scale)] for v in values)


class ConsoleRenderer:
    """Renders a segment's render input as a rich Panel (stats + close sparkline)."""

    def __init__(self, console: Optional[Console] = None, width: int = 60):
        self.console = console
        self.width = width

    def render(self, render_input: Dict[str, Any]) -> Panel:
        points = render_input.get("pointsData") or []
        logger.debug(f"Rendering {render_input.get('id')} ({len(points)} points)")
        closes = [float(p["close"]) for p in points]

        lines = [
            f"[cyan]x0:[/] {render_input.get('x0') or '-'}",
            f"[cyan]Bars:[/] {len(points)}",
            f"[red]Min:[/] {render_input['minPrice']:.4f}  "
            f"[yellow]Avg:[/] {render_input['averagePrice']:.4f}  "
            f"[green]Max:[/] {render_input['maxPrice']:.4f}",
        ]
        if render_input.get("patternPoint"):
            lines.append(f"[magenta]Pattern point:[/] {render_input['patternPoint']}")
        lines.append(sparkline(closes, self.width))

        panel = Panel(
            Text.from_markup("\n".join(lines)),
            title=render_input.get("id") or "Segment",
            border_style="blue",
        )
        if self.console is not None:
            self.console.print(panel)
        return panel


def generate_segment_table(segments: List[Segment], title: str = "Trend Segments") -> Table:
    table = Table(title=title)
    table.add_column("Segment", style="cyan", no_wrap=True)
    table.add_column("Dir", justify="center")
    table.add_column("x0", style="dim")
    table.add_column("Bars", justify="right")
    table.add_column("In Region", justify="right")
    table.add_column("Tier", justify="center")
    table.add_column("Red/Green", justify="right")
    table.add_column("Min / Avg / Max", justify="right")
    table.add_column("Schema", justify="center")

    for seg in segments:
        dir_style = "green" if seg.trend_direction == TrendDirection.UP else "red"
        tier = region_tier(seg.points_in_region)

        schema_str = seg.schema_type.value
        if seg.schema_type == SchemaType.UNCLASSIFIED:
            schema_str = f"[dim]{schema_str}[/]"
        else:
            schema_str = f"[bold]{schema_str}[/]"
        if seg.invalid:
            schema_str += " [red](gap)[/]"

        in_region = "-" if seg.points_in_region is None else str(seg.points_in_region)

        table.add_row(
            seg.id,
            f"[{dir_style}]{seg.trend_direction.value}[/]",
            seg.x0.strftime("%Y-%m-%d %H:%M"),
            f"{seg.point_count}/{seg.original_point_count}",
            in_region,
            f"[{TIER_STYLES[tier]}]{tier}[/]",
            f"{seg.red_point_count}/{seg.green_point_count}",
            f"{seg.min_price:.4f} / {seg.average_price:.4f} / {seg.max_price:.4f}",
            schema_str,
        )
    return table


def generate_summary_panel(summary: Dict[str, Any]) -> Panel:
    items = [
        f"[cyan]Segments:[/] {summary['total']}",
        f"[green]R:[/] {summary['r_classified']}",
        f"[green]V:[/] {summary['v_classified']}",
        f"[yellow]Unclassified:[/] {summary['unclassified']}",
        f"[magenta]Pattern points:[/] {summary['pattern_points_referenced']}",
    ]
    if summary["invalid"]:
        items.append(f"[red]Invalid:[/] {summary['invalid']}")
    if summary["next_unclassified_id"]:
        items.append(f"[blue]Next:[/] {summary['next_unclassified_id']}")

    return Panel(Text.from_markup("  |  ".join(items)), title="Review", border_style="blue")
