"""
actiongate Executor — Exécution des capabilities.

  CapabilityRegistry → plugins et API externes (validate + execute)
  CommandRouter      → commandes système privilégiées
  adapters/          → implémentations concrètes
"""

from executor.registry import Capability, CapabilityRegistry
from executor.commands import CommandRouter

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "CommandRouter",
]
