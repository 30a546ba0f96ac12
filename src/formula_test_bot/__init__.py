"""
formula-test-bot — package root

File: src/formula_test_bot/__init__.py

Purpose
- CI test bot for a package-manager repository ("tap"): detect which package
  definitions a change touches, build and bottle them from source, test them,
  then install and test their dependents, and report every command run.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
