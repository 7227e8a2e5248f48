"""
Readiness engine: graph validation, constraints, evaluation, rollup,
permissions, cascade and the start gate.

Submodules are imported directly (``from erection_readiness.engine.readiness
import ReadinessEvaluator``); the ORM models depend on ``engine.enums``.
"""
