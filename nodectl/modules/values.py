"""Values document rendering for chart installs."""
import logging
import re
from typing import Dict, Optional

import yaml

from ..config import Config
from .errors import TemplateError

logger = logging.getLogger("values")

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Z0-9_]+)\s*\}\}")
UNPINNED_VERSIONS = {"", "latest", "stable", "main"}


def release_name(subdomain: str, app_id: str) -> str:
    """Release name for an application: ``<subdomain>-<app id>``."""
    return f"{subdomain}-{app_id}"


def pinned_chart_version(version: Optional[str]) -> Optional[str]:
    """Return the chart version to pin, or None when the template floats."""
    if version is None or version.strip().lower() in UNPINNED_VERSIONS:
        return None
    return version.strip()


def normalize_repo_url(ref: str) -> str:
    """Give a bare ``host/path`` repository reference an https scheme."""
    ref = ref.strip()
    if "://" in ref or ref.startswith("git@"):
        return ref
    return f"https://{ref}"


def builtin_values(
    version: str, subdomain: str, domain: str, release: str
) -> Dict[str, str]:
    return {
        "VERSION": version,
        "SUBDOMAIN": subdomain,
        "DOMAIN": domain,
        "RELEASE_NAME": release,
    }


def _substitute(text: str, values: Dict[str, str]) -> str:
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", str(value))
    return text


def render_values(
    template_text: str,
    builtins: Dict[str, str],
    placeholders: Optional[Dict[str, str]] = None,
) -> str:
    """Render a values template by literal token replacement.

    Built-in tokens are replaced first, then template-specific placeholders
    (whose own values may reference built-ins), then ``{{TIMEZONE}}`` falls
    back to ``Config.DEFAULT_TIMEZONE``.

    Args:
        template_text: Values document containing ``{{TOKEN}}`` markers
        builtins: VERSION, SUBDOMAIN, DOMAIN and RELEASE_NAME values
        placeholders: Template-specific token values

    Returns:
        str: The rendered YAML document

    Raises:
        TemplateError: If the rendered document is not valid YAML
    """
    rendered = _substitute(template_text, builtins)

    extra = {
        key: _substitute(str(value), builtins)
        for key, value in (placeholders or {}).items()
    }
    rendered = _substitute(rendered, extra)
    rendered = _substitute(rendered, {"TIMEZONE": Config.DEFAULT_TIMEZONE})

    leftovers = sorted(set(TOKEN_PATTERN.findall(rendered)))
    if leftovers:
        logger.warning(f"Unresolved placeholders in values: {', '.join(leftovers)}")

    try:
        yaml.safe_load(rendered)
    except yaml.YAMLError as e:
        raise TemplateError(f"Rendered values are not valid YAML: {e}") from e
    return rendered
