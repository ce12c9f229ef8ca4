from __future__ import annotations

import pytest
from pydantic import ValidationError

from config.settings import DEFAULT_SEARCH_ENDPOINT, Settings, validate_settings


def test_endpoints_parsed_from_comma_separated_string():
    config = Settings(SEARCH_SCRAPE_ENDPOINTS=" a.example.com, b.example.com ,")

    assert config.SEARCH_SCRAPE_ENDPOINTS == ["a.example.com", "b.example.com"]


def test_blank_endpoints_fall_back_to_default():
    config = Settings(SEARCH_SCRAPE_ENDPOINTS=" , ")

    assert config.SEARCH_SCRAPE_ENDPOINTS == [DEFAULT_SEARCH_ENDPOINT]


def test_validate_settings_reports_missing_credentials():
    config = Settings(SEARCH_API_KEY="search-key", OPENAI_API_KEY="  ", ANTHROPIC_API_KEY=None)

    assert validate_settings(config) == ["OPENAI_API_KEY", "ANTHROPIC_API_KEY"]


def test_mask_sensitive():
    config = Settings(OPENAI_API_KEY="sk-proj-abcdefghijklmnop4xyz", SEARCH_API_KEY="short")

    assert config.mask_sensitive("OPENAI_API_KEY") == "sk-proj-ab...4xyz"
    assert config.mask_sensitive("SEARCH_API_KEY") == "***"


@pytest.mark.parametrize("field,value", [
    ("DEFAULT_BREADTH", 0),
    ("DEFAULT_DEPTH", -1),
    ("SEARCH_RATE_WINDOW_SECONDS", 0),
    ("OPENAI_TEMPERATURE", 3.0),
])
def test_bounds_are_enforced(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})
