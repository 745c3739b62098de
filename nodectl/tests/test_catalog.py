import pytest
import yaml

from nodectl.modules.catalog import Catalog, parse_entry
from nodectl.modules.errors import NotFoundError, TemplateError
from nodectl.modules.models import AppKind, SourceType
from nodectl.modules.values import TOKEN_PATTERN, builtin_values, render_values


def test_shipped_catalog_loads():
    catalog = Catalog()
    ids = {t.app_type for t in catalog.list()}
    assert {"code-server", "argocd", "headlamp"} <= ids

    editor = catalog.get("code-server")
    assert editor.kind is AppKind.EDITOR
    assert editor.source_type is SourceType.GIT
    assert editor.has_password

    assert catalog.get("headlamp").has_password is False


def test_shipped_templates_render_completely():
    catalog = Catalog()
    for template in catalog.list():
        rendered = render_values(
            catalog.load_values(template),
            builtin_values("1.0.0", "app", "example.com", "app-app-1"),
            template.placeholders,
        )
        assert not TOKEN_PATTERN.findall(rendered), template.app_type
        yaml.safe_load(rendered)


def test_unknown_app_type():
    with pytest.raises(NotFoundError):
        Catalog().get("does-not-exist")


def test_invalid_entry_is_rejected():
    with pytest.raises(TemplateError):
        parse_entry({"id": "broken", "name": "Broken"})
    with pytest.raises(TemplateError):
        parse_entry({
            "id": "broken",
            "name": "Broken",
            "chart": {
                "source_type": "svn",
                "repository": "x",
                "chart": "c",
                "namespace": "n",
                "values_template": "v.yaml",
            },
        })


def test_custom_directory(tmp_path):
    (tmp_path / "templates").mkdir()
    (tmp_path / "whoami.yaml").write_text("""
id: whoami
name: Whoami
chart:
  source_type: helm_repo
  repository: https://charts.example.com
  chart: whoami
  version: 0.4.0
  namespace: demo
  values_template: whoami.yaml
""")
    catalog = Catalog(tmp_path)
    template = catalog.get("whoami")
    assert template.chart_version == "0.4.0"
    assert template.kind is AppKind.GENERIC

    with pytest.raises(TemplateError):
        catalog.load_values(template)

    (tmp_path / "templates" / "whoami.yaml").write_text("replicas: 1\n")
    assert catalog.load_values(template) == "replicas: 1\n"
