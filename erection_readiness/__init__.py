"""
Erection Readiness

Constraint-gated readiness and execution permission for scheduled steel
erection work.
"""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("erection-readiness")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0+local"
