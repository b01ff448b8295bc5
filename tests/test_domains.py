import pytest

from domains import host_matches, matches_any, normalize_domain


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("youtube.com", "youtube.com"),
        ("WWW.YouTube.com", "youtube.com"),
        ("https://www.youtube.com/watch?v=1", "youtube.com"),
        ("http://m.youtube.com:8080/path", "m.youtube.com"),
        ("youtube.com.", "youtube.com"),
        ("  twitter.com/home  ", "twitter.com"),
    ],
)
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


def test_exact_and_subdomain_match():
    assert host_matches("youtube.com", "youtube.com")
    assert host_matches("https://m.youtube.com/feed", "youtube.com")
    assert host_matches("www.youtube.com", "https://youtube.com")


def test_suffix_must_be_a_label_boundary():
    assert not host_matches("notyoutube.com", "youtube.com")
    assert not host_matches("youtube.com", "m.youtube.com")


def test_empty_never_matches():
    assert not host_matches("", "youtube.com")
    assert not host_matches("youtube.com", "")


def test_matches_any():
    assert matches_any("https://x.com/home", ["youtube.com", "x.com"])
    assert not matches_any("example.org", ["youtube.com", "x.com"])
