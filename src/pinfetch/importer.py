"""Interpret a verified tree as an importable value."""

from __future__ import annotations

from contextlib import contextmanager
import importlib
import importlib.util
import logging
from pathlib import Path
import sys
from types import ModuleType
from typing import Any, Iterator, Mapping

from .errors import ArtifactImportError
from .locator import SourceLocator


logger = logging.getLogger(__name__)


def import_artifact(root: Path, locator: SourceLocator, config: Mapping[str, Any]) -> Any:
    """Return the value named by ``locator.entrypoint`` (``module[:attr]``).

    Callable attributes are applied to ``config=config``. Without an entry
    point only the marker files are checked and ``None`` is returned.
    """
    for marker in locator.markers:
        if not (root / marker).exists():
            raise ArtifactImportError(f"MARKER_MISSING:{marker}:{locator.display_name}")
    if not locator.entrypoint:
        return None

    module_name, _, attr_path = locator.entrypoint.partition(":")
    module = load_module(root, module_name.strip(), alias_prefix=_alias_prefix(locator))
    if not attr_path:
        return module

    value: Any = module
    for part in attr_path.strip().split("."):
        try:
            value = getattr(value, part)
        except AttributeError as exc:
            raise ArtifactImportError(f"ENTRYPOINT_MISSING:{locator.entrypoint}") from exc
    if not callable(value):
        return value
    try:
        return value(config=config)
    except Exception as exc:
        raise ArtifactImportError(f"ENTRYPOINT_FAILED:{locator.entrypoint}:{exc}") from exc


def load_module(root: Path, module_name: str, *, alias_prefix: str) -> ModuleType:
    if not module_name:
        raise ArtifactImportError("ENTRYPOINT_EMPTY")
    head, _, rest = module_name.partition(".")
    alias = f"{alias_prefix}{head}"
    # Bytecode written into the tree would break re-verification of cached entries.
    with _no_bytecode():
        module = sys.modules.get(alias)
        if module is None:
            module = _exec_top_level(root, head, alias)
        if not rest:
            return module
        try:
            return importlib.import_module(f"{alias}.{rest}")
        except Exception as exc:
            raise ArtifactImportError(f"MODULE_IMPORT_FAILED:{module_name}:{exc}") from exc


@contextmanager
def _no_bytecode() -> Iterator[None]:
    previous = sys.dont_write_bytecode
    sys.dont_write_bytecode = True
    try:
        yield
    finally:
        sys.dont_write_bytecode = previous


def _exec_top_level(root: Path, name: str, alias: str) -> ModuleType:
    package_init = root / name / "__init__.py"
    module_file = root / f"{name}.py"
    if package_init.is_file():
        spec = importlib.util.spec_from_file_location(
            alias, package_init, submodule_search_locations=[str(root / name)]
        )
    elif module_file.is_file():
        spec = importlib.util.spec_from_file_location(alias, module_file)
    else:
        raise ArtifactImportError(f"MODULE_NOT_FOUND:{name}")
    if spec is None or spec.loader is None:
        raise ArtifactImportError(f"MODULE_SPEC_INVALID:{name}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[alias] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(alias, None)
        raise ArtifactImportError(f"MODULE_IMPORT_FAILED:{name}:{exc}") from exc
    logger.debug("Imported %s from %s as %s", name, root, alias)
    return module


def _alias_prefix(locator: SourceLocator) -> str:
    return f"_pinfetch_{locator.digest.hex()[:16]}_"
