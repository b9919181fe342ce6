"""
Sandbox unit generation.

A sandbox unit is a single stdlib-only Python program, runnable as
``python -I -``, laid out as:

1. the start-time marker
2. the runtime guard library (memory estimator, binding table, clock)
3. the user code with top-level variables routed through the binding table
4. the call into ``run_unit``, which holds the exception boundary and
   emits the termination frame
"""

from __future__ import annotations

import inspect
import logging

from analyzer.emitter import emit_source
from analyzer.parser import parse_source
from analyzer.schemas import SandboxConfiguration
from sandbox import runtime
from sandbox.bindings import track_top_level_bindings

logger = logging.getLogger(__name__)

UNIT_HEADER = '"""Sandbox unit generated by scriptguard. Do not edit."""'

START_MARKER_BLOCK = """
import time

SANDBOX_START = time.monotonic()
""".strip()

RUN_BLOCK = """
run_unit(
    USER_SOURCE,
    start=SANDBOX_START,
    memory_limit_bytes={memory_limit_bytes!r},
    forbidden_names={forbidden_names!r},
    allowed_modules={allowed_modules!r},
)
""".strip()


def prepare_user_source(instrumented_source: str) -> str:
    """Rewrite top-level variable access into binding table subscripts."""
    tree = parse_source(instrumented_source)
    tracked = track_top_level_bindings(tree)
    logger.debug(f"Tracking {len(tracked)} top-level binding(s): {sorted(tracked)}")
    return emit_source(tree)


def build_sandbox_unit(instrumented_source: str, config: SandboxConfiguration | None = None) -> str:
    """Wrap analyzed source into a self-contained executable sandbox unit.

    Args:
        instrumented_source: Output of ``analyzer.analyze``.
        config: The configuration the source was analyzed with.

    Returns:
        Python source text of the unit.
    """
    config = config or SandboxConfiguration()
    user_source = prepare_user_source(instrumented_source)

    sections = [
        UNIT_HEADER,
        START_MARKER_BLOCK,
        inspect.getsource(runtime).strip(),
        f"USER_SOURCE = {user_source!r}",
        RUN_BLOCK.format(
            memory_limit_bytes=config.memory_limit_bytes,
            forbidden_names=tuple(sorted(config.forbidden_names)),
            allowed_modules=tuple(config.allowed_modules),
        ),
    ]
    return "\n\n\n".join(sections) + "\n"
