"""Application catalog loaded from packaged YAML definitions."""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from jsonschema import ValidationError, validate

from ..config import Config
from .errors import NotFoundError, TemplateError
from .models import AppKind, PackageTemplate, SourceType

logger = logging.getLogger("catalog")

DEFAULT_CATALOG_DIR = Path(__file__).resolve().parent.parent / "catalog"

CATALOG_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "pattern": "^[a-z0-9][a-z0-9-]*$"},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "category": {"type": "string"},
        "kind": {"enum": [k.value for k in AppKind]},
        "version_source": {
            "type": "object",
            "properties": {
                "type": {"enum": ["github", "helm", "static"]},
                "source": {"type": "string"},
            },
            "required": ["type", "source"],
        },
        "chart": {
            "type": "object",
            "properties": {
                "source_type": {"enum": [s.value for s in SourceType]},
                "repository": {"type": "string", "minLength": 1},
                "chart": {"type": "string", "minLength": 1},
                "version": {"type": "string"},
                "namespace": {"type": "string", "minLength": 1},
                "values_template": {"type": "string", "minLength": 1},
                "placeholders": {"type": "object", "additionalProperties": {"type": "string"}},
            },
            "required": ["source_type", "repository", "chart", "namespace", "values_template"],
        },
        "password": {
            "type": "object",
            "properties": {
                "grace_seconds": {"type": "number", "minimum": 0},
                "secret_names": {"type": "array", "items": {"type": "string"}},
            },
        },
        "default_port": {"type": "integer"},
    },
    "required": ["id", "name", "chart"],
}


def parse_entry(data: Dict) -> PackageTemplate:
    """Validate one catalog document and build its PackageTemplate.

    Raises:
        TemplateError: If the document does not match the catalog schema
    """
    try:
        validate(instance=data, schema=CATALOG_SCHEMA)
    except ValidationError as e:
        entry = data.get("id", "<unnamed>") if isinstance(data, dict) else "<invalid>"
        raise TemplateError(f"Invalid catalog entry '{entry}': {e.message}") from e

    chart = data["chart"]
    password = data.get("password") or {}
    return PackageTemplate(
        app_type=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        category=data.get("category", ""),
        kind=AppKind(data.get("kind", AppKind.GENERIC.value)),
        source_type=SourceType(chart["source_type"]),
        source_ref=chart["repository"],
        chart_name=chart["chart"],
        chart_version=str(chart.get("version") or ""),
        namespace=chart["namespace"],
        values_template_ref=chart["values_template"],
        placeholders=dict(chart.get("placeholders") or {}),
        default_port=data.get("default_port", 80),
        secret_names=list(password.get("secret_names") or []),
        password_grace_seconds=password.get("grace_seconds", 0),
        version_source=dict(data.get("version_source") or {}),
    )


class Catalog:
    """Read-only set of package templates keyed by application type."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory or Config.CATALOG_DIR or DEFAULT_CATALOG_DIR)
        self._templates: Optional[Dict[str, PackageTemplate]] = None

    def _load(self) -> Dict[str, PackageTemplate]:
        if self._templates is None:
            templates = {}
            for path in sorted(self.directory.glob("*.yaml")):
                try:
                    with open(path, "r") as f:
                        data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise TemplateError(f"Cannot parse catalog file {path.name}: {e}") from e
                template = parse_entry(data or {})
                templates[template.app_type] = template
            logger.debug(f"Loaded {len(templates)} catalog entries from {self.directory}")
            self._templates = templates
        return self._templates

    def list(self) -> List[PackageTemplate]:
        return list(self._load().values())

    def get(self, app_type: str) -> PackageTemplate:
        """Look up a template by application type.

        Raises:
            NotFoundError: If the catalog has no such application type
        """
        try:
            return self._load()[app_type]
        except KeyError:
            raise NotFoundError(f"Unknown application type: {app_type}") from None

    def load_values(self, template: PackageTemplate) -> str:
        """Read the raw values template for a package.

        Raises:
            TemplateError: If the values template is missing or unreadable
        """
        path = self.directory / "templates" / template.values_template_ref
        try:
            return path.read_text()
        except OSError as e:
            raise TemplateError(
                f"Values template '{template.values_template_ref}' for {template.app_type} is unreadable: {e}"
            ) from e
