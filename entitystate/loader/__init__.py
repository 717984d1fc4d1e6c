"""Loaders populate a MachineBuilder from arrays, documents or storage."""

from entitystate.loader.array import ArrayLoader
from entitystate.loader.base import Loader
from entitystate.loader.document import DocumentLoader, DocumentModel, document_json_schema
from entitystate.loader.json_loader import JSONLoader
from entitystate.loader.yaml_loader import YAMLLoader

__all__ = [
    "Loader",
    "ArrayLoader",
    "DocumentLoader",
    "DocumentModel",
    "JSONLoader",
    "YAMLLoader",
    "document_json_schema",
]
