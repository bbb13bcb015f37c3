"""Composition and module YAML loading, module library lookup and variable overrides."""

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

import jsonschema
import pulumi
import pulumi_aws
import yaml

from infragraph.engine.expressions import parse_expression
from infragraph.engine.module import ModuleDefinition, ModuleNode
from infragraph.engine.pipeline import Composition
from infragraph.engine.projector import OutputProjection
from infragraph.engine.variables import Variable
from infragraph.errors import ConfigError, InfragraphError
from infragraph.spec.validator import validate_document

MODULE_PATH_ENV = "INFRAGRAPH_MODULE_PATH"
COMPOSITION_PATH_ENV = "COMPOSITION_YAML_PATH"


def bundled_library_dir() -> Path:
    """Directory of the module definitions shipped with infragraph (infragraph/library/)."""
    return Path(__file__).resolve().parent / "library"


def read_document(path: Path) -> dict[str, Any]:
    """Read one YAML document and validate it against its schema; raises ConfigError."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"{path} is not valid YAML: {e}") from e
    try:
        validate_document(data, source=str(path))
    except (jsonschema.ValidationError, ValueError) as e:
        raise ConfigError(str(e)) from e
    return data


def default_search_paths(composition_dir: Path | None = None) -> list[Path]:
    """Module lookup order: <composition dir>/modules, INFRAGRAPH_MODULE_PATH entries, bundled library."""
    paths: list[Path] = []
    if composition_dir is not None:
        paths.append(composition_dir / "modules")
    for entry in os.environ.get(MODULE_PATH_ENV, "").split(os.pathsep):
        if entry.strip():
            paths.append(Path(entry.strip()))
    paths.append(bundled_library_dir())
    return paths


@dataclass
class ModuleLibrary:
    """Resolves module ``source`` names to parsed module definitions."""

    search_paths: list[Path]
    base_dir: Path | None = None
    _cache: dict[Path, ModuleDefinition] = field(default_factory=dict)

    def find(self, source: str) -> Path:
        """Locate a module file. Sources starting with '.' or '/' are paths; others are library names."""
        if source.startswith((".", "/")):
            path = Path(source)
            if not path.is_absolute() and self.base_dir is not None:
                path = self.base_dir / path
            if path.is_dir():
                path = path / "module.yaml"
            if path.is_file():
                return path
            raise ConfigError(f"module source not found: {source}")

        for directory in self.search_paths:
            for candidate in (directory / f"{source}.yaml", directory / f"{source}.yml", directory / source / "module.yaml"):
                if candidate.is_file():
                    return candidate
        searched = ", ".join(str(p) for p in self.search_paths) or "(none)"
        raise ConfigError(f"module source {source!r} not found. Searched: {searched}")

    def load(self, source: str) -> ModuleDefinition:
        path = self.find(source).resolve()
        if path not in self._cache:
            data = read_document(path)
            if data["kind"] != "Module":
                raise ConfigError(f"{path} is a {data['kind']}, expected a Module")
            self._cache[path] = ModuleDefinition.from_document(data)
        return self._cache[path]

    def available(self) -> list[str]:
        """Names of library modules reachable through the search paths."""
        names: set[str] = set()
        for directory in self.search_paths:
            if directory.is_dir():
                names.update(p.stem for p in directory.glob("*.yaml"))
                names.update(p.stem for p in directory.glob("*.yml"))
        return sorted(names)


@dataclass
class CompositionConfig:
    """Parsed and validated composition file."""

    name: str
    path: Path
    raw_spec: dict[str, Any]
    composition: Composition
    description: str = ""

    @property
    def module_sources(self) -> dict[str, str]:
        return {m["name"]: m["source"] for m in self.raw_spec.get("modules", [])}

    @classmethod
    def from_file(cls, path: str, library: ModuleLibrary | None = None) -> "CompositionConfig":
        """Load and validate a composition file and every module it instantiates."""
        file_path = Path(path)
        if not file_path.exists():
            raise SystemExit(f"composition file not found: {path}")
        try:
            return cls._load(file_path, library)
        except InfragraphError as e:
            raise SystemExit(str(e)) from e

    @classmethod
    def _load(cls, file_path: Path, library: ModuleLibrary | None) -> "CompositionConfig":
        data = read_document(file_path)
        if data["kind"] != "Composition":
            raise ConfigError(f"{file_path} is a {data['kind']}, expected a Composition")

        base_dir = file_path.resolve().parent
        if library is None:
            library = ModuleLibrary(default_search_paths(base_dir), base_dir=base_dir)

        metadata = data["metadata"]
        spec = data["spec"]
        variables = {name: Variable.from_dict(name, raw) for name, raw in (spec.get("variables") or {}).items()}
        modules = tuple(
            ModuleNode(
                name=m["name"],
                definition=library.load(m["source"]),
                bindings={key: parse_expression(value) for key, value in (m.get("inputs") or {}).items()},
            )
            for m in spec["modules"]
        )
        outputs = tuple(OutputProjection.from_dict(name, raw) for name, raw in (spec.get("outputs") or {}).items())

        return cls(
            name=metadata["name"],
            path=file_path,
            raw_spec=spec,
            composition=Composition(
                name=metadata["name"],
                variables=variables,
                modules=modules,
                outputs=outputs,
            ),
            description=metadata.get("description", ""),
        )


def load_composition_config() -> CompositionConfig:
    """Load the composition from the COMPOSITION_YAML_PATH environment variable."""
    path = os.environ.get(COMPOSITION_PATH_ENV)
    if not path:
        raise SystemExit(f"{COMPOSITION_PATH_ENV} environment variable required")
    if not Path(path).exists():
        raise SystemExit(f"{COMPOSITION_PATH_ENV} must point to a composition file")
    return CompositionConfig.from_file(path)


def parse_var_assignment(assignment: str) -> tuple[str, Any]:
    """Parse ``name=value``. The value is read as YAML, so ``[a, b]`` becomes a list."""
    name, sep, raw = assignment.partition("=")
    name = name.strip()
    if not sep or not name:
        raise ConfigError(f"variable override must look like name=value, got {assignment!r}")
    try:
        value = yaml.safe_load(raw) if raw.strip() else ""
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse value for {name!r}: {e}") from e
    return name, value


def load_var_file(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read variable file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"variable file {path} is not valid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"variable file {path} must contain a mapping")
    return data


def collect_overrides(var_files: list[str] | None = None, assignments: list[str] | None = None) -> dict[str, Any]:
    """Merge variable files then ``name=value`` assignments; later sources win."""
    overrides: dict[str, Any] = {}
    for path in var_files or []:
        overrides.update(load_var_file(path))
    for assignment in assignments or []:
        name, value = parse_var_assignment(assignment)
        overrides[name] = value
    return overrides


def pulumi_overrides() -> dict[str, Any]:
    """Variable overrides from Pulumi stack config ``infragraph:variables`` (an object)."""
    values = pulumi.Config("infragraph").get_object("variables")
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise SystemExit("infragraph:variables must be an object")
    return dict(values)


def create_aws_provider(composition_name: str, region: str) -> pulumi_aws.Provider:
    """Create AWS provider with default resource tags."""
    return pulumi_aws.Provider(
        "aws-tagged",
        region=region,
        default_tags=pulumi_aws.ProviderDefaultTagsArgs(
            tags={
                "composition": composition_name,
                "managed-by": "infragraph",
            }
        ),
    )
