"""
Rule configuration management.

Loads validation rules from YAML files and provides a builder for
programmatic rule sets.
"""

from pathlib import Path
from typing import Any

import yaml

PHASES = ("shape", "domain")


class RuleConfigLoader:
    """
    Loads validation rules from YAML configuration files.

    Expected YAML format (one file per entity kind):
    ```yaml
    rules:
      contractNumber:
        - type: required_field
        - type: regex
          params:
            pattern: "^[A-Z0-9-]{3,50}$"

      endDate:
        - type: date_range
          phase: domain
          params:
            start_field: startDate
    ```

    `phase` is "shape" (field presence and primitive shape, the default) or
    "domain" (business rules, run after the record has been transformed).
    """

    def __init__(self, config_path: str | Path):
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")

    def load_rules(self) -> list[dict[str, Any]]:
        """
        Load and parse validation rules from the YAML file.

        Raises:
            ValueError: If YAML is invalid or missing required fields
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not config or "rules" not in config:
            raise ValueError("Configuration file must contain 'rules' section")

        rules = []
        for field_name, field_rule_list in config["rules"].items():
            if not isinstance(field_rule_list, list):
                raise ValueError(f"Rules for field '{field_name}' must be a list")

            for idx, rule_def in enumerate(field_rule_list):
                rules.append(self._parse_rule(field_name, rule_def, idx))

        return rules

    def load_phases(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Load rules split into (shape_rules, domain_rules)."""
        return split_phases(self.load_rules())

    def _parse_rule(self, field_name: str, rule_def: dict[str, Any], idx: int) -> dict[str, Any]:
        if "type" not in rule_def:
            raise ValueError(f"Rule for field '{field_name}' is missing 'type'")

        rule_type = rule_def["type"]
        rule_name = rule_def.get("name", f"{field_name}_{rule_type}_{idx}")
        parameters = rule_def.get("params", rule_def.get("parameters", {}))

        severity = rule_def.get("severity", "error")
        if severity not in ("error", "warning"):
            raise ValueError(f"Invalid severity '{severity}' for rule '{rule_name}'. Must be 'error' or 'warning'")

        phase = rule_def.get("phase", "shape")
        if phase not in PHASES:
            raise ValueError(f"Invalid phase '{phase}' for rule '{rule_name}'. Must be 'shape' or 'domain'")

        return {
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": severity,
            "enabled": rule_def.get("enabled", True),
            "phase": phase,
        }


def split_phases(rules: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    shape = [r for r in rules if r.get("phase", "shape") == "shape"]
    domain = [r for r in rules if r.get("phase") == "domain"]
    return shape, domain


class RuleConfigBuilder:
    """
    Programmatically build rule configurations (defaults, tests, dynamic rules).
    """

    def __init__(self):
        self.rules: list[dict[str, Any]] = []

    def _add(
        self,
        rule_name: str,
        rule_type: str,
        field_name: str,
        parameters: dict[str, Any],
        phase: str = "shape",
    ) -> "RuleConfigBuilder":
        self.rules.append({
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": "error",
            "enabled": True,
            "phase": phase,
        })
        return self

    def add_required_field(
        self,
        field_name: str,
        allow_empty_string: bool = False,
        when: dict[str, Any] | None = None,
        phase: str = "shape",
    ) -> "RuleConfigBuilder":
        params: dict[str, Any] = {"allow_empty_string": allow_empty_string}
        if when:
            params["when"] = when
        return self._add(f"{field_name}_required", "required_field", field_name, params, phase)

    def add_type_check(self, field_name: str, expected_type: str, coerce: bool = True) -> "RuleConfigBuilder":
        return self._add(
            f"{field_name}_type_check",
            "type_check",
            field_name,
            {"expected_type": expected_type, "coerce": coerce},
        )

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None
    ) -> "RuleConfigBuilder":
        params = {}
        if min_value is not None:
            params["min"] = min_value
        if max_value is not None:
            params["max"] = max_value
        return self._add(f"{field_name}_range", "range", field_name, params)

    def add_regex(self, field_name: str, pattern: str) -> "RuleConfigBuilder":
        return self._add(f"{field_name}_regex", "regex", field_name, {"pattern": pattern})

    def add_enum(self, field_name: str, values: list[str]) -> "RuleConfigBuilder":
        return self._add(f"{field_name}_enum", "enum", field_name, {"values": values})

    def add_tax_id(self, field_name: str, customer_type_field: str = "customerType") -> "RuleConfigBuilder":
        return self._add(
            f"{field_name}_tax_id",
            "tax_id",
            field_name,
            {"customer_type_field": customer_type_field},
            phase="domain",
        )

    def add_email(self, field_name: str) -> "RuleConfigBuilder":
        return self._add(f"{field_name}_email", "email", field_name, {}, phase="domain")

    def add_date_range(self, field_name: str, start_field: str) -> "RuleConfigBuilder":
        return self._add(
            f"{field_name}_date_range",
            "date_range",
            field_name,
            {"start_field": start_field},
            phase="domain",
        )

    def build(self) -> list[dict[str, Any]]:
        return self.rules
