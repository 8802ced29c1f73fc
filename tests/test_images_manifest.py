"""Tests for manifest loading and mirror helpers."""

import json

import httpx
import pytest
import respx
import yaml

from fastboot_flasher.images.manifest import (
    Manifest,
    ManifestError,
    ManifestProvider,
    build_mirror_url,
    clean_mirror_url,
    extract_mirror_name,
    fetch_manifest,
    load_manifest,
    parse_manifest,
    validate_and_clean_mirrors,
)

MANIFEST_URL = "https://config.example.com/images.json"


class TestParseManifest:
    """Tests for parse_manifest and the manifest models."""

    def test_valid_manifest(self, manifest_data):
        """A valid manifest should parse into models."""
        manifest = parse_manifest(manifest_data)

        assert isinstance(manifest, Manifest)
        assert manifest.version == "2024.06.1"
        assert manifest.images.boot.size == 4096
        assert manifest.images.userdata["ubuntu"].extracted_file == "ubuntu-userdata.img"
        assert manifest.endpoints.config == "/api/config"

    def test_distributions_need_both_images(self, manifest_data):
        """Only distributions with cache and userdata should be listed."""
        manifest = parse_manifest(manifest_data)
        assert manifest.distributions() == ["ubuntu", "debian"]

    def test_mirrors_are_cleaned(self, manifest_data):
        """mirrors() should normalize and de-duplicate."""
        manifest = parse_manifest(manifest_data)
        assert manifest.mirrors() == [
            "https://ghproxy.example.net",
            "https://mirror.example.org",
        ]

    def test_missing_boot_image(self, manifest_data):
        """A manifest without a boot image should be rejected."""
        del manifest_data["images"]["boot"]

        with pytest.raises(ManifestError) as exc_info:
            parse_manifest(manifest_data)
        assert exc_info.value.code == "invalid_manifest"

    def test_userdata_requires_extracted_file(self, manifest_data):
        """Userdata entries must name the image inside the archive."""
        del manifest_data["images"]["userdata"]["debian"]["extracted_file"]

        with pytest.raises(ManifestError):
            parse_manifest(manifest_data)

    def test_not_a_mapping(self):
        """A non-mapping document should be rejected."""
        with pytest.raises(ManifestError, match="mapping"):
            parse_manifest(["not", "a", "manifest"])


class TestLoadManifest:
    """Tests for load_manifest."""

    def test_load_json(self, tmp_path, manifest_data):
        """JSON files should be loaded."""
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(manifest_data))

        assert load_manifest(path).version == "2024.06.1"

    def test_load_yaml(self, tmp_path, manifest_data):
        """YAML files should be loaded."""
        path = tmp_path / "manifest.yaml"
        path.write_text(yaml.safe_dump(manifest_data, sort_keys=False))

        assert load_manifest(path).distributions() == ["ubuntu", "debian"]

    def test_missing_file(self, tmp_path):
        """A missing file should raise not_found."""
        with pytest.raises(ManifestError) as exc_info:
            load_manifest(tmp_path / "missing.json")
        assert exc_info.value.code == "not_found"

    def test_unparsable_file(self, tmp_path):
        """Broken JSON should raise parse_error."""
        path = tmp_path / "manifest.json"
        path.write_text("{not json")

        with pytest.raises(ManifestError) as exc_info:
            load_manifest(path)
        assert exc_info.value.code == "parse_error"


class TestFetchManifest:
    """Tests for fetch_manifest."""

    @respx.mock
    def test_fetch(self, manifest_data):
        """A manifest should be fetched and validated."""
        respx.get(MANIFEST_URL).mock(return_value=httpx.Response(200, json=manifest_data))

        with httpx.Client() as client:
            manifest = fetch_manifest(client, MANIFEST_URL)

        assert manifest.version == "2024.06.1"

    @respx.mock
    def test_http_error(self):
        """HTTP errors should raise http_error."""
        respx.get(MANIFEST_URL).mock(return_value=httpx.Response(500))

        with httpx.Client() as client, pytest.raises(ManifestError) as exc_info:
            fetch_manifest(client, MANIFEST_URL)
        assert exc_info.value.code == "http_error"

    @respx.mock
    def test_network_error(self):
        """Connection errors should raise network_error."""
        respx.get(MANIFEST_URL).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client, pytest.raises(ManifestError) as exc_info:
            fetch_manifest(client, MANIFEST_URL)
        assert exc_info.value.code == "network_error"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestManifestProvider:
    """Tests for ManifestProvider."""

    def test_file_source_is_cached(self, tmp_path, manifest_data):
        """The manifest should be reused until the TTL expires."""
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(manifest_data))
        clock = FakeClock()
        provider = ManifestProvider(str(path), ttl=60, clock=clock)

        first = provider.get()
        manifest_data["version"] = "2024.07.1"
        path.write_text(json.dumps(manifest_data))

        assert provider.get() is first
        clock.now = 61
        assert provider.get().version == "2024.07.1"

    def test_force_refresh(self, tmp_path, manifest_data):
        """force_refresh should bypass the cache."""
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(manifest_data))
        provider = ManifestProvider(str(path), clock=FakeClock())
        provider.get()

        manifest_data["version"] = "2024.07.1"
        path.write_text(json.dumps(manifest_data))

        assert provider.get(force_refresh=True).version == "2024.07.1"

    @respx.mock
    def test_falls_back_to_cached_copy(self, manifest_data):
        """A failed refresh should return the cached manifest."""
        route = respx.get(MANIFEST_URL)
        route.side_effect = [
            httpx.Response(200, json=manifest_data),
            httpx.Response(503),
        ]
        with httpx.Client() as client:
            provider = ManifestProvider(MANIFEST_URL, client=client, clock=FakeClock())
            first = provider.get()

            assert provider.get(force_refresh=True) is first

    def test_error_without_cache(self, tmp_path):
        """Errors should propagate when nothing is cached."""
        provider = ManifestProvider(str(tmp_path / "missing.json"))

        with pytest.raises(ManifestError):
            provider.get()


class TestMirrorHelpers:
    """Tests for mirror URL helpers."""

    def test_clean_mirror_url(self):
        """Scheme should default to https and trailing slashes go."""
        assert clean_mirror_url(" mirror.example.org/ ") == "https://mirror.example.org"
        assert clean_mirror_url("http://m.example.org") == "http://m.example.org"

    def test_validate_and_clean_mirrors(self):
        """Blanks and duplicates should be dropped, first wins."""
        assert validate_and_clean_mirrors(["a.org", " ", "https://a.org/", "b.org"]) == [
            "https://a.org",
            "https://b.org",
        ]

    def test_build_mirror_url(self):
        """The full original URL should be appended to the mirror."""
        assert (
            build_mirror_url("https://ghproxy.example.net/", "https://github.com/o/r/a.zip")
            == "https://ghproxy.example.net/https://github.com/o/r/a.zip"
        )
        assert (
            build_mirror_url("ghproxy.example.net", "github.com/o/r/a.zip")
            == "https://ghproxy.example.net/https://github.com/o/r/a.zip"
        )

    def test_extract_mirror_name(self):
        """The last two host labels should be used."""
        assert extract_mirror_name("https://cdn.ghproxy.example.net/x") == "example.net"
        assert extract_mirror_name("not a url") == "unknown"
