"""Latest-version lookups for catalog applications."""
import logging
from typing import Optional

import requests
import yaml

from ..config import Config
from .cache import TTLCache
from .errors import NodectlError
from .models import PackageTemplate

logger = logging.getLogger("versions")


class VersionLookupError(NodectlError):
    """The latest version of an application could not be determined."""


class ReleaseVersionCatalog:
    """Resolves "latest" from GitHub releases or a Helm repository index.

    Results are cached per source for ``Config.VERSION_CACHE_TTL`` seconds.
    """

    def __init__(
        self,
        http: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 30,
    ):
        self.http = http or requests.Session()
        self.cache = cache or TTLCache(Config.VERSION_CACHE_TTL)
        self.api_url = (api_url or Config.GITHUB_API_URL).rstrip("/")
        self.token = token if token is not None else Config.GITHUB_TOKEN
        self.timeout = timeout

    def latest(self, template: PackageTemplate) -> str:
        """Return the newest released version for a template.

        Raises:
            VersionLookupError: If the source is unsupported or unreachable
        """
        source_type = template.version_source.get("type")
        source = template.version_source.get("source", "")
        lookups = {
            "github": self._github_latest,
            "helm": lambda s: self._helm_latest(s, template.chart_name),
            "static": lambda s: s,
        }
        if source_type not in lookups:
            raise VersionLookupError(
                f"No version source configured for {template.app_type}"
            )
        return self.cache.get_or_set(
            (source_type, source, template.chart_name),
            lambda: lookups[source_type](source),
        )

    def _github_latest(self, repository: str) -> str:
        if repository.count("/") != 1:
            raise VersionLookupError(f"Invalid repository format, expected owner/repo: {repository}")
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.api_url}/repos/{repository}/releases/latest"
        try:
            response = self.http.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            tag = response.json()["tag_name"]
        except (requests.RequestException, KeyError, ValueError) as e:
            raise VersionLookupError(f"Failed to fetch latest release for {repository}: {e}") from e
        version = tag[1:] if tag.startswith("v") else tag
        logger.debug(f"Latest release of {repository}: {version}")
        return version

    def _helm_latest(self, repository: str, chart: str) -> str:
        url = f"{repository.rstrip('/')}/index.yaml"
        try:
            response = self.http.get(url, timeout=self.timeout)
            response.raise_for_status()
            index = yaml.safe_load(response.text) or {}
            entries = index.get("entries", {}).get(chart) or []
            version = entries[0].get("appVersion") or entries[0]["version"]
        except (requests.RequestException, yaml.YAMLError, IndexError, KeyError, AttributeError) as e:
            raise VersionLookupError(f"Failed to read chart index for {chart} at {repository}: {e}") from e
        version = str(version)
        return version[1:] if version.startswith("v") else version
