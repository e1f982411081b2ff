"""
Rule engine and configuration for validation rules.
"""

from .defaults import default_rules
from .rule_config import RuleConfigBuilder, RuleConfigLoader, split_phases
from .rule_engine import RuleEngine

__all__ = ["RuleEngine", "RuleConfigLoader", "RuleConfigBuilder", "default_rules", "split_phases"]
