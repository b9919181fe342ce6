"""
Analysis pipeline: parse, check, instrument, emit.

The forbidden-access and recursion checks both run before the tree is
mutated. Any AnalysisError propagates to the caller and no source is
returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from analyzer.callgraph import CallGraph, build_call_graph, detect_cycles
from analyzer.emitter import emit_source
from analyzer.loops import LoopInstrumenter
from analyzer.parser import parse_source
from analyzer.policy import ForbiddenAccessDetector
from analyzer.schemas import SandboxConfiguration

logger = logging.getLogger(__name__)


@dataclass
class Analysis:
    """Outcome of a successful analysis pass."""
    source: str
    call_graph: CallGraph = field(default_factory=dict)
    loops_guarded: int = 0


def run_analysis(source_text: str, config: SandboxConfiguration | None = None) -> Analysis:
    config = config or SandboxConfiguration()

    tree = parse_source(source_text)
    logger.debug(f"Parsed source ({len(tree.body)} top-level statements)")

    detector = ForbiddenAccessDetector(
        forbidden_names=config.forbidden_names,
        forbidden_attributes=config.forbidden_attributes,
        check_computed_bases=config.check_computed_bases,
    )
    detector.check(tree)

    call_graph = build_call_graph(tree)
    detect_cycles(call_graph)
    logger.debug(f"Call graph has {len(call_graph)} function(s), no cycles")

    loops_guarded = LoopInstrumenter(config.loop_timeout_ms).instrument(tree)
    logger.debug(f"Guarded {loops_guarded} loop(s) with a {config.loop_timeout_ms} ms budget")

    return Analysis(source=emit_source(tree), call_graph=call_graph, loops_guarded=loops_guarded)


def analyze(source_text: str, config: SandboxConfiguration | None = None) -> str:
    """Check and instrument untrusted source.

    Returns:
        The instrumented source text.

    Raises:
        SourceSyntaxError: Malformed source.
        PolicyViolation: A denylisted name, path or attribute is referenced.
        RecursionDetected: The call graph contains a cycle.
    """
    return run_analysis(source_text, config).source
