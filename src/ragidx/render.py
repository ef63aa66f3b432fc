"""Jinja2 rendering of hydrated search results.

Turns hydrated results into a Markdown block suitable for pasting into an
LLM prompt. User overrides in .ragidx/templates/ take precedence over the
built-in templates in src/ragidx/templates/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import jinja2

from ragidx.exceptions import RagidxError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ragidx.corpus import Corpus
    from ragidx.types import ErrorRecord, HydratedResult

__all__ = ["DEFAULT_TEMPLATE", "ContextRenderer", "RenderItem"]

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "context.md.j2"

# Headings in a breadcrumb are cut to this many characters
BREADCRUMB_CHARS = 60


@dataclass(frozen=True)
class RenderItem:
    """Template-ready view of one hydrated result."""

    source_id: str
    text: str
    score: float | None = None
    parent: str = ""
    breadcrumb: list[str] = field(default_factory=list)
    before: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if stripped:
            return stripped[:BREADCRUMB_CHARS]
    return ""


def _to_item(result: HydratedResult, corpus: Corpus | None) -> RenderItem:
    ctx = result.context
    breadcrumb: list[str] = []
    if ctx.hierarchy_path and corpus is not None:
        for chunk_id in ctx.hierarchy_path:
            chunk = corpus.get(chunk_id)
            if chunk is not None:
                breadcrumb.append(_first_line(chunk.content.text))
    return RenderItem(
        source_id=result.chunk.source.source_id,
        text=result.chunk.content.text.strip(),
        score=result.score,
        parent=ctx.parent.content.text.strip() if ctx.parent is not None else "",
        breadcrumb=[b for b in breadcrumb if b],
        before=[c.content.text.strip() for c in ctx.siblings_before],
        after=[c.content.text.strip() for c in ctx.siblings_after],
    )


class ContextRenderer:
    """Jinja2 renderer with built-in and user-override template support.

    Template search order:
      1. .ragidx/templates/ (user overrides, optional)
      2. src/ragidx/templates/ (built-in, always present)
    """

    def __init__(self, project_root: Path | None = None) -> None:
        from importlib.resources import files

        search_paths: list[str] = []
        if project_root is not None:
            user_dir = project_root / ".ragidx" / "templates"
            if user_dir.is_dir():
                search_paths.append(str(user_dir))
                logger.info("User template overrides enabled: %s", user_dir)

        builtin_dir = Path(str(files("ragidx") / "templates"))
        if not builtin_dir.is_dir():
            raise RagidxError(
                "Built-in template directory not found; installation may be corrupted"
            )
        search_paths.append(str(builtin_dir))

        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(search_paths),
            autoescape=False,
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(
        self,
        query: str,
        results: Sequence[HydratedResult],
        corpus: Corpus | None = None,
        warnings: Sequence[ErrorRecord] = (),
        template_name: str = DEFAULT_TEMPLATE,
    ) -> str:
        """Render hydrated results as Markdown.

        Args:
            query: The query the results answer.
            results: Hydrated results, best first.
            corpus: Used to resolve hierarchy paths into heading breadcrumbs.
            warnings: Degradation or integrity warnings to list at the end.
            template_name: Template file to render.

        Raises:
            RagidxError: If the template is not found or rendering fails.
        """
        try:
            template = self._env.get_template(template_name)
        except jinja2.TemplateNotFound as e:
            raise RagidxError(f"Template not found: {template_name}") from e

        try:
            return template.render(
                query=query,
                results=[_to_item(r, corpus) for r in results],
                warnings=[{"code": w.code.value, "message": w.message} for w in warnings],
            )
        except jinja2.TemplateError as e:
            raise RagidxError(f"Failed to render template {template_name}: {e}") from e
