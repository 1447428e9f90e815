"""
actiongate Orchestrator — Le pipeline gouverné.

Le détecteur propose. L'engine décide. Les registres exécutent.

2 modules :
  - detector.py → texte libre → ActionDescriptor candidats
  - engine.py   → preview, approbation, exécution, audit + build_engine()
"""

from orchestrator.detector import ActionDetector, KeywordActionDetector, KeywordRule
from orchestrator.engine import (
    GovernanceEngine,
    TurnMode,
    TurnResponse,
    build_engine,
)

__all__ = [
    "ActionDetector",
    "KeywordActionDetector",
    "KeywordRule",
    "GovernanceEngine",
    "TurnMode",
    "TurnResponse",
    "build_engine",
]
