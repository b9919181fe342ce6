"""
Playground Module

Host-side front end for the analyzer and sandbox.

This module provides:
- YAML-based sandbox configuration loading
- A session helper that analyzes, builds and runs a script
- CLI for analyzing, building and running scripts
"""

__version__ = "0.1.0"
