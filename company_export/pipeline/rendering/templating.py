"""Templating utilities for invoice document rendering.

This module provides a stateless templating API: template file lookup by
template key, placeholder extraction, and context-driven substitution of
``{Placeholder}`` tokens. It is used for document templates, for free-text
invoice notes and for custom field value templates.

Boundaries
----------
- Does not write to disk; only reads template files.
- Only string handling; layout of the rendered text is done by ``renderer.py``.
- Missing-value placeholder and template directory come from
  ``company_export.config``.

Examples
--------
>>> render_template("Invoice {InvoiceNumber}", {"InvoiceNumber": "INV-1"})
'Invoice INV-1'
>>> render_template("Hi {Unknown}", {}, missing=None)
'Hi {Unknown}'
"""

import re
from pathlib import Path

from company_export.config import (
    MISSING_DATA_PLACEHOLDER,
    TEMPLATE_DIR,
    TEMPLATE_FILENAME_SUFFIX,
)

PLACEHOLDER_PATTERN = re.compile(r"\{([a-zA-Z0-9_]+)\}")
TEMPLATE_KEY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def template_path_for(template_key: str, template_dir: Path | None = None) -> Path:
    """Resolve the template file for ``template_key``.

    Parameters
    ----------
    template_key : str
        Lowercase key such as ``"invoice1"`` or ``"invoice-custom"``.
    template_dir : Path | None, optional
        Directory holding ``{template_key}.md`` files. Defaults to
        ``TEMPLATE_DIR``.

    Returns
    -------
    Path
        Path of the template file (not checked for existence).

    Raises
    ------
    ValueError
        If the key contains characters other than lowercase letters, digits,
        ``-`` and ``_``.
    """
    if not TEMPLATE_KEY_PATTERN.match(template_key or ""):
        raise ValueError(f"Invalid template key: {template_key!r}")
    base = template_dir if template_dir is not None else TEMPLATE_DIR
    return base / f"{template_key}{TEMPLATE_FILENAME_SUFFIX}"


def load_template(path: Path) -> str:
    """Read the contents of a template file as a string.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    OSError
        If the file cannot be read.
    """
    with path.open("r", encoding="utf-8") as fh:
        return fh.read()


def render_template(
    template_content: str,
    context: dict[str, str],
    missing: str | None = MISSING_DATA_PLACEHOLDER,
) -> str:
    """Render the template by replacing placeholders using the provided context.

    Parameters
    ----------
    template_content : str
        The template text containing ``{Placeholders}``.
    context : dict[str, str]
        Mapping from placeholder names to their string values.
    missing : str | None, optional
        Replacement for placeholders absent from ``context``. ``None`` keeps
        the original ``{Token}`` text. Defaults to
        ``MISSING_DATA_PLACEHOLDER``.

    Returns
    -------
    str
        The rendered template with placeholders substituted.
    """

    def replace_func(match: re.Match[str]) -> str:
        placeholder_name = match.group(1)
        if placeholder_name in context:
            return str(context[placeholder_name])
        return match.group(0) if missing is None else missing

    return PLACEHOLDER_PATTERN.sub(replace_func, template_content)
