"""Per-organization artifact storage and the tabular (CSV) writer."""

from .store import ArtifactStore, namespace_name, sanitize_sub_key, slugify
from .tabular import TabularSink, expense_row, open_sink

__all__ = [
    "ArtifactStore",
    "TabularSink",
    "expense_row",
    "namespace_name",
    "open_sink",
    "sanitize_sub_key",
    "slugify",
]
