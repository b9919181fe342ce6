"""Source parsing. Runs before every other analysis stage."""

from __future__ import annotations

import ast
import logging

from analyzer.errors import SourceSyntaxError

logger = logging.getLogger(__name__)


def parse_source(source: str, filename: str = "<sandbox>") -> ast.Module:
    """Parse source text into a mutable syntax tree.

    Raises:
        SourceSyntaxError: If the text is not valid Python. Nothing else
            has run at that point, so there is no partial result.
    """
    try:
        tree = ast.parse(source, filename=filename, mode="exec")
    except SyntaxError as exc:
        logger.info(f"Rejecting source: syntax error at line {exc.lineno}: {exc.msg}")
        raise SourceSyntaxError(f"SyntaxError: {exc.msg}", exc.lineno, exc.offset) from exc
    except ValueError as exc:
        # e.g. source containing null bytes
        raise SourceSyntaxError(f"SyntaxError: {exc}") from exc
    return tree
