from typing import List

from idea_refiner.schemas.refine import RefinementPlan


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {s}" for s in items)


def _numbered(items: List[str]) -> str:
    return "\n".join(f"{i}. {s}" for i, s in enumerate(items, start=1))


def render_markdown(plan: RefinementPlan) -> str:
    return "\n\n".join(
        [
            f"# {plan.title}",
            plan.short_description,
            f"## Problem\n{plan.problem}",
            f"## Solution\n{plan.solution}",
            "## Core Features\n" + _bullets(plan.core_features),
            "## MVP Scope\n" + _bullets(plan.mvp_scope),
            "## Suggested Tech Stack\n" + _bullets(plan.suggested_tech_stack),
            "## Next Steps\n" + _numbered(plan.next_steps),
        ]
    ) + "\n"
