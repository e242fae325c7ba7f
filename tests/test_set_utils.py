import pytest
from requests.structures import CaseInsensitiveDict

from set_transmitter.setUtils import (
    build_headers,
    decode_body,
    is_valid_set,
    is_valid_url,
    merge_headers,
    normalize_auth_token,
    parse_response_body,
    parse_response_headers,
)

from conftest import VALID_JWT, build_response


@pytest.mark.parametrize(
    "jwt",
    [
        VALID_JWT,
        "a.b.c",
        "A-_z.0-9_.xyz-_",
    ],
)
def test_well_formed_tokens_are_accepted(jwt):
    assert is_valid_set(jwt)


@pytest.mark.parametrize(
    "jwt",
    [
        "",
        "abc",
        "a.b",
        "a.b.c.d",
        "a..c",
        ".b.c",
        "a.b.",
        "a.b+.c",
        "a.b/c.d",
        "a.b=.c",
        "a.b c.d",
        "a.b.c\n",
        None,
        123,
    ],
)
def test_malformed_tokens_are_rejected(jwt):
    assert not is_valid_set(jwt)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://receiver.example.com/events", True),
        ("http://localhost:8080/ssf", True),
        ("receiver.example.com/events", False),
        ("/events", False),
        ("not a url", False),
        ("ftp://example.com/x", False),
        ("https://", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_url(url, expected):
    assert is_valid_url(url) is expected


def test_normalize_auth_token():
    assert normalize_auth_token("tok") == "Bearer tok"
    assert normalize_auth_token("Bearer tok") == "Bearer tok"
    assert normalize_auth_token(normalize_auth_token("tok")) == "Bearer tok"
    assert normalize_auth_token(None) is None
    assert normalize_auth_token("") is None


def test_build_headers_defaults_without_auth():
    headers = build_headers()
    assert headers == {
        "Content-Type": "application/secevent+jwt",
        "Accept": "application/json",
        "User-Agent": "SGNL-Action-Framework/1.0",
    }


def test_build_headers_auth_and_overrides_win():
    headers = build_headers("secret", {"User-Agent": "MyApp/1.0", "X-Request-ID": "r-1"})
    assert headers["Authorization"] == "Bearer secret"
    assert headers["User-Agent"] == "MyApp/1.0"
    assert headers["X-Request-ID"] == "r-1"
    assert headers["Content-Type"] == "application/secevent+jwt"


def test_caller_can_override_authorization():
    headers = build_headers("secret", {"Authorization": "Basic abc"})
    assert headers["Authorization"] == "Basic abc"


def test_merge_headers_is_case_sensitive():
    merged = merge_headers({"User-Agent": "a"}, {"user-agent": "b"})
    assert merged == {"User-Agent": "a", "user-agent": "b"}


def test_parse_response_headers_lowercases_names():
    raw = CaseInsensitiveDict({"Content-Type": "application/json", "Retry-After": "5", "X-Trace": "AbC"})
    assert parse_response_headers(raw) == {
        "content-type": "application/json",
        "retry-after": "5",
        "x-trace": "AbC",
    }


def test_parse_response_body_json():
    assert parse_response_body('{"a":1}', "application/json; charset=utf-8", True) == {"a": 1}


def test_parse_response_body_parsing_disabled():
    assert parse_response_body('{"a":1}', "application/json", False) == '{"a":1}'


def test_parse_response_body_invalid_json_falls_back_to_text():
    assert parse_response_body("not-json", "application/json", True) == "not-json"


def test_parse_response_body_non_json_content_type():
    assert parse_response_body('{"a":1}', "text/plain", True) == '{"a":1}'
    assert parse_response_body('{"a":1}', None, True) == '{"a":1}'


def test_parse_response_body_empty():
    assert parse_response_body("", "application/json", True) == ""


def test_decode_body_ignores_requests_latin1_default():
    # requests assumes ISO-8859-1 for text/* without a charset
    resp = build_response(500, "héllo".encode("utf-8"), {"Content-Type": "text/plain"})
    resp.encoding = "ISO-8859-1"
    assert decode_body(resp, "héllo".encode("utf-8")) == "héllo"


def test_decode_body_honours_declared_charset():
    resp = build_response(500, b"", {"Content-Type": "text/plain; charset=ISO-8859-1"})
    resp.encoding = "ISO-8859-1"
    assert decode_body(resp, "héllo".encode("latin-1")) == "héllo"


def test_decode_body_without_content_type_is_utf8():
    resp = build_response(200, b"")
    assert decode_body(resp, "héllo".encode("utf-8")) == "héllo"
