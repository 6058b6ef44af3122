"""Tests for license resolution from local package metadata."""

import json
from unittest.mock import Mock

import pytest

from licensediff.exceptions import MalformedMetadataError, MetadataNotFoundError
from licensediff.license_resolver import (
    LicenseResolver,
    NodeModulesStore,
    NugetPackageCache,
    default_nuget_cache_root,
    parse_nuspec_license,
    parse_package_json_license,
)
from licensediff.models import Dependency, Ecosystem

NUSPEC_EXPRESSION = b"""<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd">
  <metadata>
    <id>Newtonsoft.Json</id>
    <version>13.0.3</version>
    <license type="expression"> MIT </license>
    <licenseUrl>https://licenses.nuget.org/MIT</licenseUrl>
  </metadata>
</package>
"""

NUSPEC_LEGACY_URL = b"""<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://schemas.microsoft.com/packaging/2011/08/nuspec.xsd">
  <metadata>
    <id>Old.Package</id>
    <version>1.0.0</version>
    <licenseUrl>https://example.com/license.txt</licenseUrl>
  </metadata>
</package>
"""

NUSPEC_FILE_LICENSE = b"""<?xml version="1.0"?>
<package>
  <metadata>
    <id>Filed</id>
    <version>2.0.0</version>
    <license type="file">LICENSE.txt</license>
  </metadata>
</package>
"""


def write_nuspec(cache_root, name, version, content, filename=None):
    package_dir = cache_root / name.lower() / version
    package_dir.mkdir(parents=True)
    (package_dir / (filename or f"{name.lower()}.nuspec")).write_bytes(content)
    return package_dir


def write_package_json(project_root, name, data):
    package_dir = project_root / "node_modules" / name
    package_dir.mkdir(parents=True)
    content = data if isinstance(data, str) else json.dumps(data)
    (package_dir / "package.json").write_text(content)


class TestParseNuspec:
    """Tests for parse_nuspec_license."""

    def test_expression_wins_over_url(self):
        """A license expression is used verbatim (trimmed) and stops there."""
        assert parse_nuspec_license(NUSPEC_EXPRESSION) == ("MIT", None)

    def test_legacy_license_url(self):
        """Without an expression the licenseUrl is returned."""
        assert parse_nuspec_license(NUSPEC_LEGACY_URL) == (None, "https://example.com/license.txt")

    def test_file_license_is_not_an_expression(self):
        """A file-type license yields nothing."""
        assert parse_nuspec_license(NUSPEC_FILE_LICENSE) == (None, None)

    def test_expression_type_is_case_insensitive(self):
        """The type attribute is compared ignoring case."""
        content = b'<package><metadata><license type="Expression">Apache-2.0</license></metadata></package>'
        assert parse_nuspec_license(content) == ("Apache-2.0", None)

    def test_compound_expression_kept_as_is(self):
        """SPDX expressions are opaque strings."""
        content = b'<package><metadata><license type="expression">MIT OR Apache-2.0</license></metadata></package>'
        assert parse_nuspec_license(content) == ("MIT OR Apache-2.0", None)

    def test_empty_expression_falls_back_to_url(self):
        """An empty expression element does not count."""
        content = (b'<package><metadata><license type="expression"></license>'
                   b'<licenseUrl>https://x.example/l</licenseUrl></metadata></package>')
        assert parse_nuspec_license(content) == (None, "https://x.example/l")

    def test_malformed_xml(self):
        """Broken XML raises MalformedMetadataError."""
        with pytest.raises(MalformedMetadataError):
            parse_nuspec_license(b"<package><metadata>")


class TestParsePackageJson:
    """Tests for parse_package_json_license."""

    def test_license_string(self):
        """A license string is used directly and no URL is set."""
        content = json.dumps({"license": "MIT", "homepage": "https://lodash.com/"}).encode()
        assert parse_package_json_license(content) == ("MIT", None)

    def test_licenses_array(self):
        """Legacy licenses arrays are joined with OR."""
        content = json.dumps({"licenses": [{"type": "MIT"}, {"type": "Apache-2.0"}]}).encode()
        assert parse_package_json_license(content) == ("MIT OR Apache-2.0", None)

    def test_empty_licenses_array_uses_homepage(self):
        """An empty array is UNKNOWN and the homepage becomes the URL."""
        content = json.dumps({"licenses": [], "homepage": "https://example.com"}).encode()
        assert parse_package_json_license(content) == ("UNKNOWN", "https://example.com")

    def test_repository_string(self):
        """Without a homepage the repository string is used."""
        content = json.dumps({"repository": "github:user/repo"}).encode()
        assert parse_package_json_license(content) == ("UNKNOWN", "github:user/repo")

    def test_repository_object(self):
        """A repository object contributes its url field."""
        content = json.dumps({"repository": {"type": "git", "url": "git+https://github.com/u/r.git"}}).encode()
        assert parse_package_json_license(content) == ("UNKNOWN", "git+https://github.com/u/r.git")

    def test_license_object_form(self):
        """The deprecated {type, url} object form is accepted."""
        content = json.dumps({"license": {"type": "ISC", "url": "https://opensource.org/licenses/ISC"}}).encode()
        assert parse_package_json_license(content) == ("ISC", None)

    def test_empty_license_string(self):
        """An empty license string counts as UNKNOWN."""
        content = json.dumps({"license": "", "homepage": "https://h.example"}).encode()
        assert parse_package_json_license(content) == ("UNKNOWN", "https://h.example")

    def test_no_license_information(self):
        """Nothing declared gives UNKNOWN without a URL."""
        assert parse_package_json_license(b'{"name": "x"}') == ("UNKNOWN", None)

    @pytest.mark.parametrize("content", [b"{not json", b"[1, 2]", b'{"license": 42}'])
    def test_malformed(self, content):
        """Unparsable or wrongly shaped content raises MalformedMetadataError."""
        with pytest.raises(MalformedMetadataError):
            parse_package_json_license(content)


class TestStores:
    """Tests for the metadata store lookups."""

    def test_nuget_cache_lowercases_name(self, tmp_path):
        """The cache folder uses the lowercased package name."""
        write_nuspec(tmp_path, "Newtonsoft.Json", "13.0.3", NUSPEC_EXPRESSION)
        store = NugetPackageCache(tmp_path)
        assert store.read_metadata("Newtonsoft.Json", "13.0.3") == NUSPEC_EXPRESSION

    def test_nuget_missing_folder(self, tmp_path):
        """A missing package folder raises MetadataNotFoundError with the path."""
        store = NugetPackageCache(tmp_path)
        with pytest.raises(MetadataNotFoundError) as exc_info:
            store.read_metadata("Missing", "1.0.0")
        assert exc_info.value.path == tmp_path / "missing" / "1.0.0"

    def test_nuget_folder_without_nuspec(self, tmp_path):
        """A package folder without a .nuspec raises MetadataNotFoundError."""
        (tmp_path / "pkg" / "1.0.0").mkdir(parents=True)
        with pytest.raises(MetadataNotFoundError):
            NugetPackageCache(tmp_path).read_metadata("Pkg", "1.0.0")

    def test_default_cache_root_env_override(self, monkeypatch, tmp_path):
        """NUGET_PACKAGES overrides the default cache location."""
        monkeypatch.setenv("NUGET_PACKAGES", str(tmp_path))
        assert default_nuget_cache_root() == tmp_path

    def test_default_cache_root_home(self, monkeypatch):
        """Without the variable the cache lives under ~/.nuget/packages."""
        monkeypatch.delenv("NUGET_PACKAGES", raising=False)
        assert default_nuget_cache_root().parts[-2:] == (".nuget", "packages")

    def test_node_modules_scoped_package(self, tmp_path):
        """Scoped npm names map to nested folders."""
        write_package_json(tmp_path, "@babel/core", {"license": "MIT"})
        store = NodeModulesStore(tmp_path)
        assert json.loads(store.read_metadata("@babel/core", "7.0.0")) == {"license": "MIT"}


class TestLicenseResolverNuget:
    """Tests for NuGet resolution."""

    def test_expression(self, tmp_path):
        """The nuspec license expression becomes the license."""
        write_nuspec(tmp_path, "Newtonsoft.Json", "13.0.3", NUSPEC_EXPRESSION)
        resolver = LicenseResolver(NugetPackageCache(tmp_path))
        dep = resolver.resolve(Dependency("Newtonsoft.Json", "13.0.3", Ecosystem.NUGET))
        assert dep.license == "MIT"
        assert dep.license_url is None

    def test_legacy_url(self, tmp_path):
        """A legacy licenseUrl leaves the license UNKNOWN with that URL."""
        write_nuspec(tmp_path, "Old.Package", "1.0.0", NUSPEC_LEGACY_URL)
        resolver = LicenseResolver(NugetPackageCache(tmp_path))
        dep = resolver.resolve(Dependency("Old.Package", "1.0.0", Ecosystem.NUGET))
        assert dep.license == "UNKNOWN"
        assert dep.license_url == "https://example.com/license.txt"

    def test_no_license_information(self, tmp_path):
        """Neither expression nor URL gives UNKNOWN without a URL."""
        write_nuspec(tmp_path, "Filed", "2.0.0", NUSPEC_FILE_LICENSE)
        dep = LicenseResolver(NugetPackageCache(tmp_path)).resolve(Dependency("Filed", "2.0.0", "nuget"))
        assert dep.license == "UNKNOWN"
        assert dep.license_url is None

    def test_not_in_cache(self, tmp_path):
        """A package missing from the cache gets the gallery URL."""
        callback = Mock()
        resolver = LicenseResolver(NugetPackageCache(tmp_path), on_unresolved=callback)
        dep = resolver.resolve(Dependency("Serilog", "3.1.1", Ecosystem.NUGET))
        assert dep.license == "UNKNOWN"
        assert dep.license_url == "https://www.nuget.org/packages/Serilog/3.1.1"
        callback.assert_called_once()
        assert callback.call_args[0][0] is dep

    def test_malformed_nuspec_downgrades(self, tmp_path, caplog):
        """A broken nuspec is logged and treated like a missing one."""
        write_nuspec(tmp_path, "Broken", "1.0.0", b"<package><metadata>")
        dep = LicenseResolver(NugetPackageCache(tmp_path)).resolve(Dependency("Broken", "1.0.0", Ecosystem.NUGET))
        assert dep.license == "UNKNOWN"
        assert dep.license_url == "https://www.nuget.org/packages/Broken/1.0.0"
        assert any(r.levelname == "WARNING" for r in caplog.records)

    def test_idempotent(self, tmp_path):
        """Resolving twice yields the same values."""
        write_nuspec(tmp_path, "Old.Package", "1.0.0", NUSPEC_LEGACY_URL)
        resolver = LicenseResolver(NugetPackageCache(tmp_path))
        dep = Dependency("Old.Package", "1.0.0", Ecosystem.NUGET)
        first = (resolver.resolve(dep).license, dep.license_url)
        second = (resolver.resolve(dep).license, dep.license_url)
        assert first == second


class TestLicenseResolverNpm:
    """Tests for npm resolution."""

    def test_license_found(self, tmp_path):
        """The package.json license is used."""
        write_package_json(tmp_path, "lodash", {"license": "MIT"})
        resolver = LicenseResolver(NugetPackageCache(tmp_path / "nuget"), NodeModulesStore(tmp_path))
        dep = resolver.resolve(Dependency("lodash", "4.17.21", Ecosystem.NPM))
        assert dep.license == "MIT"
        assert dep.license_url is None

    def test_missing_package_json(self, tmp_path):
        """A package missing from node_modules gets the npm registry URL."""
        resolver = LicenseResolver(NugetPackageCache(tmp_path), NodeModulesStore(tmp_path))
        dep = resolver.resolve(Dependency("left-pad", "1.3.0", Ecosystem.NPM))
        assert dep.license == "UNKNOWN"
        assert dep.license_url == "https://www.npmjs.com/package/left-pad"

    def test_malformed_package_json(self, tmp_path):
        """Invalid JSON downgrades to the not-found outcome."""
        write_package_json(tmp_path, "broken", "{oops")
        resolver = LicenseResolver(NugetPackageCache(tmp_path), NodeModulesStore(tmp_path))
        dep = resolver.resolve(Dependency("broken", "1.0.0", Ecosystem.NPM))
        assert dep.license == "UNKNOWN"
        assert dep.license_url == "https://www.npmjs.com/package/broken"

    def test_without_node_modules_location(self, tmp_path):
        """No npm store means every npm package is unresolved."""
        dep = LicenseResolver(NugetPackageCache(tmp_path)).resolve(Dependency("react", "18.2.0", Ecosystem.NPM))
        assert dep.license == "UNKNOWN"
        assert dep.license_url == "https://www.npmjs.com/package/react"

    def test_resolve_all_with_threads(self, tmp_path):
        """Parallel resolution returns dependencies in input order."""
        names = [f"pkg{i}" for i in range(10)]
        for i, name in enumerate(names):
            write_package_json(tmp_path, name, {"license": f"L{i}"})
        resolver = LicenseResolver(NugetPackageCache(tmp_path), NodeModulesStore(tmp_path))
        deps = [Dependency(name, "1.0.0", Ecosystem.NPM) for name in names]

        resolved = resolver.resolve_all(deps, max_workers=4)

        assert [d.name for d in resolved] == names
        assert [d.license for d in resolved] == [f"L{i}" for i in range(10)]
