import pytest

from app.utils import parse_json_payload, poster_placeholder, slugify, truncate


def test_slugify_basic():
    assert slugify("Project Hail Mary!") == "project-hail-mary"


def test_parse_json_payload_accepts_arrays():
    assert parse_json_payload('[{"title": "Dune"}]') == [{"title": "Dune"}]


def test_parse_json_payload_from_markdown():
    payload = """
    ```json
    {"title": "Dune"}
    ```
    """
    assert parse_json_payload(payload) == {"title": "Dune"}


def test_parse_json_payload_rejects_garbage():
    with pytest.raises(ValueError):
        parse_json_payload("definitely not json")


def test_poster_placeholder_uses_title_seed():
    assert poster_placeholder("Dune") == "https://picsum.photos/seed/dune/300/450"


def test_truncate_long_values():
    assert truncate("abcdef", limit=3) == "abc…"
    assert truncate("abc", limit=3) == "abc"
