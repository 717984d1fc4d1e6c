"""
YAML machine-definition loader.

Same document layout as the JSON loader, written as YAML::

    machines:
      - name: order
        states:
          - {name: new, type: initial}
          - {name: done, type: final}
        transitions:
          - {state_from: new, state_to: done, event: finish}
"""

import yaml

from entitystate.loader.document import DocumentLoader


class YAMLLoader(DocumentLoader):
    """Loads a machine from a YAML document (string or file)."""

    format_name = "yaml"

    def parse(self, text: str):
        return yaml.safe_load(text) or {}

    def get_yaml(self) -> str:
        return self.get_text()
