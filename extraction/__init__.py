"""Tabular document extraction - templates, row parser and ingestion."""

from extraction.tabular import ParseResult, cell_text, parse_rows
from extraction.templates import (
    ColumnTemplate,
    INSPECTION_V1,
    STATEMENT_V1,
    STATEMENT_V2,
    get_template,
    list_templates,
    register_template,
)

__all__ = [
    "ParseResult",
    "cell_text",
    "parse_rows",
    "ColumnTemplate",
    "INSPECTION_V1",
    "STATEMENT_V1",
    "STATEMENT_V2",
    "get_template",
    "list_templates",
    "register_template",
]
