"""Tests for base URL validation, path joining and redirect derivation."""

import pytest

from api_client.errors import InvalidBaseURL
from api_client.url import derive_redirection, join_path, parse_base_url


class TestParseBaseUrl:
    def test_http_url_accepted(self) -> None:
        endpoint = parse_base_url("http://example.com/api")
        assert endpoint.scheme == "http"
        assert endpoint.host == "example.com"
        assert endpoint.port is None
        assert endpoint.base_path == "/api"

    def test_https_with_port(self) -> None:
        endpoint = parse_base_url("https://example.com:8443/v2")
        assert endpoint.scheme == "https"
        assert endpoint.port == 8443
        assert endpoint.url == "https://example.com:8443/v2"

    def test_trailing_separator_stripped_once(self) -> None:
        assert parse_base_url("http://h/api/").base_path == "/api"
        assert parse_base_url("http://h/api//").base_path == "/api/"

    def test_root_path_kept(self) -> None:
        assert parse_base_url("http://h/").base_path == "/"

    def test_missing_path_becomes_root(self) -> None:
        assert parse_base_url("http://h").base_path == "/"

    def test_scheme_is_case_insensitive(self) -> None:
        assert parse_base_url("HTTPS://h/").scheme == "https"

    def test_ipv6_origin_keeps_brackets(self) -> None:
        endpoint = parse_base_url("http://[::1]:8080/")
        assert endpoint.origin == "http://[::1]:8080"

    @pytest.mark.parametrize(
        "base_url",
        [
            "ftp://example.com/",
            "file:///etc/passwd",
            "ws://example.com/socket",
            "example.com/api",
        ],
    )
    def test_disallowed_scheme_rejected(self, base_url: str) -> None:
        with pytest.raises(InvalidBaseURL):
            parse_base_url(base_url)

    @pytest.mark.parametrize(
        "base_url",
        [
            "http://example.com/api?key=1",
            "http://example.com/api#section",
            "https://example.com/?a=b#c",
        ],
    )
    def test_query_or_fragment_rejected(self, base_url: str) -> None:
        with pytest.raises(InvalidBaseURL):
            parse_base_url(base_url)

    def test_missing_host_rejected(self) -> None:
        with pytest.raises(InvalidBaseURL):
            parse_base_url("http:///api")

    def test_bad_port_rejected(self) -> None:
        with pytest.raises(InvalidBaseURL):
            parse_base_url("http://example.com:notaport/")

    def test_non_string_rejected(self) -> None:
        with pytest.raises(InvalidBaseURL):
            parse_base_url(None)  # type: ignore[arg-type]

    def test_invalid_base_url_is_type_error(self) -> None:
        """Validation errors are programmer errors."""
        with pytest.raises(TypeError):
            parse_base_url("ftp://example.com/")


class TestJoinPath:
    def test_non_root_base(self) -> None:
        assert join_path("/api", "/x") == "/api/x"

    def test_root_base_does_not_double_separator(self) -> None:
        assert join_path("/", "/x") == "/x"

    def test_root_call_path(self) -> None:
        assert join_path("/api", "/") == "/api/"
        assert join_path("/", "/") == "/"


class TestDeriveRedirection:
    def test_strips_call_path_from_location(self) -> None:
        result = derive_redirection(
            "https://eu.example.com/api/widgets?page=2",
            "http://example.com/api/widgets",
            "/widgets",
        )
        assert result == "https://eu.example.com/api"

    def test_relative_location_resolved_against_request(self) -> None:
        result = derive_redirection(
            "/v2/widgets",
            "http://example.com/v1/widgets",
            "/widgets",
        )
        assert result == "http://example.com/v2"

    def test_rightmost_occurrence_is_stripped(self) -> None:
        result = derive_redirection(
            "http://h/items/base/items",
            "http://h/base/items",
            "/items",
        )
        assert result == "http://h/items/base"

    def test_call_path_query_ignored_for_matching(self) -> None:
        result = derive_redirection(
            "http://new/api/search",
            "http://old/api/search?q=a",
            "/search?q=a",
        )
        assert result == "http://new/api"

    def test_unrelated_location_keeps_path(self) -> None:
        result = derive_redirection(
            "http://other/login?next=1#top",
            "http://h/api/widgets",
            "/widgets",
        )
        assert result == "http://other/login"

    def test_root_call_path_strips_trailing_separator(self) -> None:
        assert derive_redirection("http://new/api/", "http://old/api/", "/") == "http://new/api"
