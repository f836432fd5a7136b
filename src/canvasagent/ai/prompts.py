"""Prompt templates for the canvas agent."""

from __future__ import annotations

from .tools.registry import OperationCategory, OperationRegistry
from .tools.schemas import NAMED_COLORS

DEFAULT_MAX_ITERATIONS = 5


def system_prompt(
    canvas_state_text: str | None = None,
    *,
    registry: OperationRegistry | None = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> str:
    """Build the system prompt, embedding the rendered canvas digest when given."""

    return f"""You are the assistant inside a collaborative canvas editor.
Turn the user's request into calls to the canvas tools. Several people may be
editing the same canvas, so always work from the canvas state below.

## Shapes
- rectangle, circle, star (3-12 points), line (optional arrows), text

## Canvas
- Coordinates are pixels from the top-left corner; x and y must stay within -10000..10000
- Width and height must stay within 1..5000
- If no position is requested, omit x and y and the object is placed at the canvas center

## Colors
Use hex codes (#RRGGBB) or these names:
{_color_section()}

{_tools_section(registry)}

## Working in steps
You have up to {max_iterations} reasoning steps per request.
- Use query tools first for requests about "all X" or "find X"; their results are sent back to you
- Then call action tools with the ids you received
- Only reference ids that appear in the canvas state or in query results
- When the task is done, or you need clarification, reply without tool calls
- If the task needs more steps than you have, ask the user to split it up

## Replies
Keep confirmations short, e.g. "Created 3 blue circles in a row".

{_context_section(canvas_state_text)}"""


def _color_section() -> str:
    return "\n".join(f"- {name}: {value}" for name, value in NAMED_COLORS.items())


def _tools_section(registry: OperationRegistry | None) -> str:
    if registry is None:
        return "## Tools\nQuery tools read the canvas; every other tool changes it."
    lines = ["## Tools"]
    titles = {
        OperationCategory.QUERY: "Query (read-only)",
        OperationCategory.CREATION: "Creation",
        OperationCategory.MANIPULATION: "Manipulation",
        OperationCategory.STYLING: "Styling",
        OperationCategory.LAYOUT: "Layout",
    }
    for category, title in titles.items():
        specs = registry.list_operations(category=category)
        if not specs:
            continue
        lines.append(f"### {title}")
        lines.extend(f"- **{spec.name}**: {spec.description}" for spec in specs)
    return "\n".join(lines)


def _context_section(canvas_state_text: str | None) -> str:
    if not canvas_state_text:
        return "## Current canvas\nThe canvas state is unavailable; call getCanvasState before referencing objects."
    return f"""## Current canvas
{canvas_state_text.rstrip()}

When several objects match a description such as "the blue circle", ask which one is meant."""


__all__ = ["DEFAULT_MAX_ITERATIONS", "system_prompt"]
