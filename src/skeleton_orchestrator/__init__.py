"""
skeleton_orchestrator

Top-level package for the legal-document skeleton session orchestrator.

Responsibilities:
- Expose package version metadata.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# No imports here: subpackages are imported directly.
