"""Tests for the pijul input scheme, schemas and registry."""
import json
from urllib.parse import parse_qsl, urlparse

import pytest

from pijul_fetch.core.errors import PijulFetchError, SchemeValidationError, UnsupportedInputError
from pijul_fetch.fetcher import PijulProbe
from pijul_fetch.inputs import Descriptor, PijulInputScheme, SchemeRegistry, get_schema
from pijul_fetch.inputs.descriptor import derive_name


def _normalize(url: str):
    """Compare URLs modulo query parameter order."""
    parsed = urlparse(url)
    return (
        parsed.scheme,
        parsed.netloc,
        parsed.path,
        sorted(parse_qsl(parsed.query, keep_blank_values=True)),
        parsed.fragment,
    )


class TestFromURL:
    def test_strips_prefix_and_lifts_reserved_params(self, scheme):
        descriptor = scheme.from_url(
            "pijul+https://example.org/repo?channel=main&state=S1&depth=1"
        )

        assert descriptor.url == "https://example.org/repo?depth=1"
        assert descriptor.channel == "main"
        assert descriptor.state == "S1"
        assert descriptor.locked is True

    def test_channel_only_is_not_locked(self, scheme):
        descriptor = scheme.from_url("pijul+ssh://host/repo?channel=main")

        assert descriptor.url == "ssh://host/repo"
        assert descriptor.channel == "main"
        assert descriptor.state is None
        assert descriptor.locked is False

    def test_bare_scheme_is_kept(self, scheme):
        descriptor = scheme.from_url("pijul://nest.pijul.com/pijul/pijul")

        assert descriptor.url == "pijul://nest.pijul.com/pijul/pijul"
        assert descriptor.name == "pijul"

    def test_file_url_keeps_empty_authority(self, scheme):
        descriptor = scheme.from_url("pijul+file:///srv/repos/project")

        assert descriptor.url == "file:///srv/repos/project"

    @pytest.mark.parametrize("url", [
        "https://example.org/repo",
        "git+https://example.org/repo",
        "pijul-https://example.org/repo",
        "/local/path",
    ])
    def test_unrecognized_schemes_return_none(self, scheme, url):
        assert scheme.from_url(url) is None

    def test_unknown_query_param_is_not_an_attribute(self, scheme):
        descriptor = scheme.from_url("pijul+https://example.org/repo?bogus=x")

        assert "bogus" not in descriptor.to_attrs()
        assert descriptor.url == "https://example.org/repo?bogus=x"


class TestRoundTrip:
    @pytest.mark.parametrize("url", [
        "pijul+https://example.org/repo",
        "pijul+https://example.org/repo?channel=main&state=MXWQ5TNZ",
        "pijul+ssh://user@host:2222/path/repo?depth=1&channel=dev",
        "pijul+http://localhost:8000/repo?state=S1&a=1&b=2",
        "pijul+file:///tmp/repo",
        "pijul://nest.pijul.com/pijul/pijul?state=XYZ",
    ])
    def test_to_url_inverts_from_url(self, scheme, url):
        assert _normalize(scheme.to_url(scheme.from_url(url))) == _normalize(url)

    @pytest.mark.parametrize("url", [
        "pijul+https://example.org/repo?channel=feature/x",
        "pijul+https://example.org/repo?ref=a/b",
        "pijul+https://example.org/repo?x=a%20b",
        "pijul+https://example.org/repo?flag",
        "pijul+https://example.org/repo?flag&ref=a/b&channel=main&state=S1",
        "pijul+ssh://user@host/repo?x=a+b&y=%2F&state=S1",
    ])
    def test_round_trip_is_byte_exact(self, scheme, url):
        """Test: encoding of the query survives a round trip unchanged.

        Given: a URL with slashes, percent escapes or valueless parameters
        When: it is parsed and rendered back
        Then: the result is the identical string
        """
        assert scheme.to_url(scheme.from_url(url)) == url

    def test_other_params_reach_clone_url_verbatim(self, scheme):
        descriptor = scheme.from_url(
            "pijul+https://example.org/repo?ref=a/b&channel=main&x=a%20b&flag"
        )

        assert descriptor.url == "https://example.org/repo?ref=a/b&x=a%20b&flag"
        assert descriptor.channel == "main"

    def test_reserved_values_are_decoded(self, scheme):
        descriptor = scheme.from_url("pijul+https://example.org/repo?channel=feature%2Fx+y")

        assert descriptor.channel == "feature/x y"
        assert descriptor.url == "https://example.org/repo"

    def test_to_url_adds_prefix_and_params(self, scheme):
        descriptor = scheme.from_attrs({
            "type": "pijul",
            "url": "https://example.org/repo",
            "channel": "main",
            "state": "S1",
        })

        assert scheme.to_url(descriptor) == "pijul+https://example.org/repo?channel=main&state=S1"


class TestFromAttrs:
    def test_rejects_unknown_attribute(self, scheme):
        """Test: an attribute outside the allow-list is a validation failure.

        Given: attrs {type: pijul, url: ..., bogus: x}
        When: from_attrs is called
        Then: SchemeValidationError names "bogus"
        """
        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_attrs({"type": "pijul", "url": "https://example.org/repo", "bogus": "x"})

        assert exc_info.value.attribute == "bogus"
        assert "bogus" in str(exc_info.value)

    def test_rejects_unknown_attribute_before_url_check(self, scheme):
        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_attrs({"type": "pijul", "bogus": "x"})

        assert exc_info.value.attribute == "bogus"

    def test_other_types_return_none(self, scheme):
        assert scheme.from_attrs({"type": "git", "url": "https://example.org/repo"}) is None
        assert scheme.from_attrs({"url": "https://example.org/repo"}) is None

    def test_requires_url(self, scheme):
        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_attrs({"type": "pijul"})

        assert exc_info.value.attribute == "url"

    @pytest.mark.parametrize("url", ["http://[::1", "no-scheme-here", "https://host:notaport/repo"])
    def test_rejects_unparseable_url(self, scheme, url):
        with pytest.raises(SchemeValidationError):
            scheme.from_attrs({"type": "pijul", "url": url})

    @pytest.mark.parametrize("key", ["channel", "state"])
    def test_rejects_empty_pin(self, scheme, key):
        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_attrs({"type": "pijul", "url": "https://example.org/repo", key: ""})

        assert exc_info.value.attribute == key

    def test_empty_pins_in_url_are_rejected(self, scheme):
        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_url("pijul+https://example.org/repo?channel=&state=")

        assert exc_info.value.attribute == "channel"

    def test_rejects_mistyped_values(self, scheme):
        with pytest.raises(SchemeValidationError):
            scheme.from_attrs({
                "type": "pijul",
                "url": "https://example.org/repo",
                "lastModified": "1700000000",
            })

    def test_accepts_provenance_attrs(self, scheme):
        descriptor = scheme.from_attrs({
            "type": "pijul",
            "url": "https://example.org/repo",
            "lastModified": 1700000000,
            "narHash": "sha256:" + "a" * 64,
        })

        assert descriptor.last_modified == 1700000000
        assert scheme.has_complete_info(descriptor) is True

    def test_attrs_round_trip(self, scheme):
        attrs = {
            "type": "pijul",
            "url": "https://example.org/repo",
            "channel": "main",
            "state": "S1",
            "lastModified": 1700000000,
        }

        assert scheme.from_attrs(attrs).to_attrs() == attrs

    def test_has_complete_info_requires_last_modified(self, scheme):
        descriptor = scheme.from_url("pijul+https://example.org/repo?channel=main&state=S1")

        assert scheme.has_complete_info(descriptor) is False


class TestSchemaVersions:
    def test_version_one_has_no_state_and_never_locks(self):
        scheme = PijulInputScheme(schema_version=1)

        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_url("pijul+https://example.org/repo?channel=main&state=S1")
        assert exc_info.value.attribute == "state"

        descriptor = scheme.from_url("pijul+https://example.org/repo?channel=main")
        assert descriptor.locked is False

    def test_version_two_rejects_provenance_attrs(self):
        scheme = PijulInputScheme(schema_version=2)

        with pytest.raises(SchemeValidationError) as exc_info:
            scheme.from_attrs({
                "type": "pijul",
                "url": "https://example.org/repo",
                "lastModified": 1700000000,
            })
        assert exc_info.value.attribute == "lastModified"

    def test_version_two_locks_on_channel_and_state(self):
        scheme = PijulInputScheme(schema_version=2)

        assert scheme.from_url("pijul+https://example.org/repo?channel=main&state=S1").locked is True

    def test_unknown_version(self):
        with pytest.raises(SchemeValidationError):
            get_schema(99)

    def test_lock_predicate_ignores_missing_values(self):
        schema = get_schema()

        assert schema.is_locked({"channel": "main", "state": None}) is False
        assert schema.is_locked({"channel": "main", "state": "S1"}) is True

    def test_lock_predicate_ignores_empty_values(self):
        schema = get_schema()

        assert schema.is_locked({"channel": "", "state": ""}) is False
        assert schema.is_locked({"channel": "main", "state": ""}) is False


class TestDescriptor:
    @pytest.mark.parametrize("url, expected", [
        ("https://example.org/repo", "repo"),
        ("https://example.org/repo/", "repo"),
        ("ssh://host/path/project.git", "project"),
        ("https://example.org/", "source"),
        ("https://example.org/repo?depth=1", "repo"),
        ("https://example.org/a/..", "source"),
        ("https://example.org/..", "source"),
    ])
    def test_derive_name(self, url, expected):
        assert derive_name(url) == expected

    def test_repo_url_drops_query_and_fragment(self):
        descriptor = Descriptor(url="https://example.org/repo?depth=1#readme")

        assert descriptor.repo_url == "https://example.org/repo"

    def test_descriptor_is_frozen(self):
        descriptor = Descriptor(url="https://example.org/repo")

        with pytest.raises(ValueError):
            descriptor.channel = "main"

    def test_empty_pin_is_invalid(self):
        with pytest.raises(ValueError):
            Descriptor(url="https://example.org/repo", channel="")


class TestLocalWorkingCopy:
    def test_source_path_for_unpinned_file_url(self, scheme, tmp_path):
        descriptor = scheme.from_url(f"pijul+file://{tmp_path}")

        assert scheme.get_source_path(descriptor) == tmp_path

    def test_no_source_path_when_pinned_or_remote(self, scheme, tmp_path):
        assert scheme.get_source_path(scheme.from_url(f"pijul+file://{tmp_path}?channel=main")) is None
        assert scheme.get_source_path(scheme.from_url("pijul+https://example.org/repo")) is None

    def test_mark_changed_file_adds_and_records(self, fake_pijul, tmp_path):
        scheme = PijulInputScheme(probe=PijulProbe(str(fake_pijul)))
        working_copy = tmp_path / "wc"
        working_copy.mkdir()
        descriptor = scheme.from_url(f"pijul+file://{working_copy}")

        scheme.mark_changed_file(descriptor, "flake.lock", commit_msg="Update lock")

        commands = [
            json.loads(line)
            for line in (working_copy / "pijul-commands.log").read_text().splitlines()
        ]
        assert commands == [
            ["add", "--", "flake.lock"],
            ["record", "flake.lock", "-m", "Update lock"],
        ]

    def test_mark_changed_file_rejects_remote_inputs(self, scheme):
        with pytest.raises(PijulFetchError):
            scheme.mark_changed_file(scheme.from_url("pijul+https://example.org/repo"), "x")


class TestRegistry:
    def test_dispatches_to_registered_scheme(self, scheme):
        registry = SchemeRegistry([scheme])

        descriptor = registry.input_from_url("pijul+https://example.org/repo")

        assert descriptor.type == "pijul"
        assert registry.scheme_for(descriptor) is scheme

    def test_unsupported_url(self, scheme):
        with pytest.raises(UnsupportedInputError):
            SchemeRegistry([scheme]).input_from_url("https://example.org/repo")

    def test_unsupported_attrs(self, scheme):
        with pytest.raises(UnsupportedInputError):
            SchemeRegistry([scheme]).input_from_attrs({"type": "git", "url": "x"})

    def test_validation_errors_propagate(self, scheme):
        with pytest.raises(SchemeValidationError):
            SchemeRegistry([scheme]).input_from_attrs({"type": "pijul", "url": "x", "rev": "1"})

    def test_empty_registry_supports_nothing(self):
        with pytest.raises(UnsupportedInputError):
            SchemeRegistry().input_from_url("pijul+https://example.org/repo")
