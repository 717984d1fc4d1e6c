"""
JSON machine-definition loader.

Usage:
    loader = JSONLoader.from_file("machines.json")
    builder = MachineBuilder("order")
    loader.load(builder)
"""

import json

from entitystate.loader.document import DocumentLoader


class JSONLoader(DocumentLoader):
    """Loads a machine from a JSON document (string or file)."""

    format_name = "json"

    def parse(self, text: str):
        return json.loads(text)

    def get_json(self) -> str:
        """The raw JSON text this loader was created with."""
        return self.get_text()

    def get_json_schema(self) -> str:
        return self.get_schema()
