import pytest

from subber_proxy.server import parse_otlp_headers


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", []),
        ("authorization=Bearer abc", [("authorization", "Bearer abc")]),
        ("X-Api-Key=k1,x-tenant=acme", [("x-api-key", "k1"), ("x-tenant", "acme")]),
        (" x-a = 1 , x-b=2 ", [("x-a", "1"), ("x-b", "2")]),
        ("x-token=a=b", [("x-token", "a=b")]),
    ],
)
def test_parse_otlp_headers(raw, expected):
    assert parse_otlp_headers(raw) == expected


def test_parse_otlp_headers_skips_entries_without_a_name():
    assert parse_otlp_headers("novalue,=orphan,,x-ok=1") == [("x-ok", "1")]
