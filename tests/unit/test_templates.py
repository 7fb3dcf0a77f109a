"""Unit tests for deploy-time templating."""

from __future__ import annotations

import pytest

from zarf_core.cluster.state import ClusterState, GitServerInfo, RegistryInfo
from zarf_core.errors import PackageError
from zarf_core.packager.templates import TemplateValues, parse_set_variables, placeholder
from zarf_core.types import Package, PackageKind, PackageMetadata, Variable


def package_with_variables(*variables):
    return Package(
        kind=PackageKind.STANDARD,
        metadata=PackageMetadata(name="app"),
        variables=list(variables),
    )


class TestParseSetVariables:
    """Tests for parse_set_variables."""

    def test_pairs(self):
        """Test keys are upper-cased and values may contain '='."""
        assert parse_set_variables(["domain=example.com", "QUERY=a=b"]) == {
            "DOMAIN": "example.com",
            "QUERY": "a=b",
        }

    def test_invalid(self):
        """Test a pair without '=' is rejected."""
        with pytest.raises(PackageError, match="KEY=VALUE"):
            parse_set_variables(["DOMAIN"])


class TestTemplateValues:
    """Tests for TemplateValues."""

    def test_for_deploy(self):
        """Test state, variables and the injection marker become placeholders."""
        state = ClusterState(
            storage_class="local-path",
            registry_info=RegistryInfo(address="127.0.0.1:31999", node_port=31999),
            git_server=GitServerInfo(address="http://git", push_username="push", pull_username="pull"),
        )
        package = package_with_variables(Variable("DOMAIN", "localhost"), Variable("REPLICAS", "1"))

        values = TemplateValues.for_deploy(package, state, {"REPLICAS": "3", "EXTRA": "x"}, ".zarf-injection-1").values

        assert values[placeholder("REGISTRY")] == "127.0.0.1:31999"
        assert values[placeholder("NODEPORT")] == "31999"
        assert values[placeholder("STORAGE_CLASS")] == "local-path"
        assert values[placeholder("GIT_PUSH")] == "push"
        assert values[placeholder("DATA_INJECTION_MARKER")] == ".zarf-injection-1"
        assert values[placeholder("VAR_DOMAIN")] == "localhost"
        assert values[placeholder("VAR_REPLICAS")] == "3"
        assert values[placeholder("VAR_EXTRA")] == "x"

    def test_apply_leaves_unknown(self):
        """Test unknown placeholders are left as-is."""
        templates = TemplateValues({"###ZARF_REGISTRY###": "reg:5000"})
        assert templates.apply("a: ###ZARF_REGISTRY###\nb: ###ZARF_OTHER###") == "a: reg:5000\nb: ###ZARF_OTHER###"

    def test_apply_file(self, tmp_path):
        """Test text files are rewritten in place."""
        path = tmp_path / "values.yaml"
        path.write_text("image: ###ZARF_REGISTRY###/nginx\n")
        TemplateValues({"###ZARF_REGISTRY###": "reg:5000"}).apply_file(path)
        assert path.read_text() == "image: reg:5000/nginx\n"

    def test_apply_file_skips_binary(self, tmp_path):
        """Test undecodable files are left untouched."""
        path = tmp_path / "blob"
        path.write_bytes(b"\xff\xfe###ZARF_REGISTRY###")
        TemplateValues({"###ZARF_REGISTRY###": "reg"}).apply_file(path)
        assert path.read_bytes() == b"\xff\xfe###ZARF_REGISTRY###"

    def test_apply_file_missing(self, tmp_path):
        """Test a missing file is a package error."""
        with pytest.raises(PackageError, match="missing"):
            TemplateValues().apply_file(tmp_path / "values.yaml")

    def test_apply_copy_leaves_source(self, tmp_path):
        """Test the copy is templated and the package file keeps its placeholders."""
        source = tmp_path / "pkg" / "podinfo-0"
        source.parent.mkdir()
        source.write_text("image: ###ZARF_REGISTRY###/nginx\n")

        target = TemplateValues({"###ZARF_REGISTRY###": "reg:5000"}).apply_copy(source, tmp_path / "run" / "values")

        assert target == tmp_path / "run" / "values" / "podinfo-0"
        assert target.read_text() == "image: reg:5000/nginx\n"
        assert source.read_text() == "image: ###ZARF_REGISTRY###/nginx\n"

    def test_apply_copy_missing(self, tmp_path):
        """Test a missing source is a package error and nothing is created."""
        with pytest.raises(PackageError, match="podinfo-0 is missing"):
            TemplateValues().apply_copy(tmp_path / "podinfo-0", tmp_path / "run")
        assert not (tmp_path / "run").exists()
