"""OpenAPI document discovery, loading and reference resolution."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import unquote

import yaml


logger = logging.getLogger(__name__)

SPEC_FILENAMES = frozenset({"openapi.json", "openapi.yaml", "openapi.yml"})
DEFAULT_VERSION = "v1"


class SpecLoadError(Exception):
    pass


def find_spec_files(root: Path) -> Iterator[Path]:
    """Yield description documents below ``root`` in filesystem order."""
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            if filename in SPEC_FILENAMES:
                yield Path(dirpath) / filename


def read_document(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise SpecLoadError(f"Cannot parse {path}: {exc}") from exc


class RefResolver:
    """Replaces every ``$ref`` in a document with the object it points to.

    Internal (``#/...``) and relative-file references are supported. A
    reference that is already being resolved higher up the stack is circular
    and is left in place as ``{"$ref": ...}``.
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path.resolve()
        self._documents: Dict[Path, Any] = {}
        self._stack: List[Tuple[Path, str]] = []

    def dereference(self, document: Any) -> Any:
        self._documents[self.base_path] = document
        return self._walk(document, self.base_path)

    def _walk(self, node: Any, current: Path) -> Any:
        if isinstance(node, list):
            return [self._walk(item, current) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            return self._resolve_ref(ref, node, current)
        return {key: self._walk(value, current) for key, value in node.items()}

    def _resolve_ref(self, ref: str, node: Dict[str, Any], current: Path) -> Any:
        file_part, _, pointer = ref.partition("#")
        target_path = (current.parent / file_part).resolve() if file_part else current
        key = (target_path, pointer)

        if key in self._stack:
            logger.debug("Circular reference left unresolved: %s", ref)
            return dict(node)

        target = self._lookup(self._document(target_path), pointer, ref)
        self._stack.append(key)
        try:
            resolved = self._walk(target, target_path)
        finally:
            self._stack.pop()

        siblings = {k: v for k, v in node.items() if k != "$ref"}
        if siblings and isinstance(resolved, dict):
            merged = dict(resolved)
            merged.update({k: self._walk(v, current) for k, v in siblings.items()})
            return merged
        return resolved

    def _document(self, path: Path) -> Any:
        if path not in self._documents:
            if not path.is_file():
                raise SpecLoadError(f"Referenced file not found: {path}")
            self._documents[path] = read_document(path)
        return self._documents[path]

    def _lookup(self, document: Any, pointer: str, ref: str) -> Any:
        node = document
        for token in [t for t in pointer.split("/") if t]:
            token = unquote(token).replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                raise SpecLoadError(f"Unresolvable reference: {ref}")
        return node


class SpecStore:
    def __init__(self, spec_dir: Path | str) -> None:
        self.spec_dir = Path(spec_dir)

    def exists(self) -> bool:
        return self.spec_dir.is_dir()

    def discover(self) -> List[Path]:
        return list(find_spec_files(self.spec_dir))

    def load(self, path: Path) -> Dict[str, Any]:
        document = read_document(path)
        if not isinstance(document, dict):
            raise SpecLoadError(f"Description document is not an object: {path}")
        return RefResolver(path).dereference(document)

    def product_and_version(self, path: Path) -> Tuple[str, str]:
        relative = path.relative_to(self.spec_dir)
        directories = relative.parts[:-1]
        if not directories:
            raise SpecLoadError(f"Description document outside a product directory: {path}")
        product = directories[0]
        version: Optional[str] = directories[1] if len(directories) > 1 else None
        return product, version or DEFAULT_VERSION
