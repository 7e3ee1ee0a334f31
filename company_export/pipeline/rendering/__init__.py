"""Template loading and PDF rendering of invoice documents."""

from .renderer import DocumentBundle, build_document_context, render_document
from .templating import (
    load_template,
    render_template,
    template_path_for,
)

__all__ = [
    "DocumentBundle",
    "build_document_context",
    "load_template",
    "render_document",
    "render_template",
    "template_path_for",
]
