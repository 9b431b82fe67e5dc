"""Prompt templates for backend requests."""

from cartographer.prompts.loader import (
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
    get_loader,
    safe_format,
)
from cartographer.prompts.schema import render_operation_schema

__all__ = [
    "PromptLoader",
    "PromptTemplate",
    "TemplateNotFoundError",
    "TemplateParseError",
    "get_loader",
    "render_operation_schema",
    "safe_format",
]
