#!/usr/bin/env python3
"""Tests for key=value config file parsing and path resolution."""

from __future__ import annotations

import pytest

from agent_llm.config import load_config_file, parse_config_lines, resolve_config_path
from agent_llm.errors import ConfigurationError


def test_parse_skips_comments_and_blank_lines():
    lines = [
        "# provider settings",
        "",
        "provider = anthropic",
        "anthropic_api_key=sk-ant-xyz",
        "   # indented comment",
        "base_url=https://example.com/v1?x=1",
        "empty=",
    ]
    config = parse_config_lines(lines)

    assert config == {
        "provider": "anthropic",
        "anthropic_api_key": "sk-ant-xyz",
        "base_url": "https://example.com/v1?x=1",
        "empty": "",
    }


def test_parse_reports_line_number():
    with pytest.raises(ConfigurationError, match="Error parsing line 2: Missing '=' separator"):
        parse_config_lines(["provider=openai", "model gpt-4o"])

    with pytest.raises(ConfigurationError, match="Missing key"):
        parse_config_lines(["=value"])


def test_load_config_file(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text("provider=ollama\nmodel=llama3.2\n", encoding="utf-8")

    assert load_config_file(path) == {"provider": "ollama", "model": "llama3.2"}

    with pytest.raises(ConfigurationError, match="Cannot read configuration file"):
        load_config_file(tmp_path / "nope.txt")


def test_undecodable_file_is_a_configuration_error(tmp_path):
    path = tmp_path / "latin1.txt"
    path.write_bytes(b"provider=openai\nmodel=\xff\xfe\n")

    with pytest.raises(ConfigurationError, match="latin1.txt"):
        load_config_file(path)


def test_resolution_order(tmp_path, monkeypatch):
    """As given, then the project directory, then the working directory."""
    project = tmp_path / "project"
    cwd = tmp_path / "cwd"
    project.mkdir()
    cwd.mkdir()
    (project / "config.txt").write_text("provider=openai\n", encoding="utf-8")
    (cwd / "only-cwd.txt").write_text("provider=gemini\n", encoding="utf-8")
    monkeypatch.chdir(cwd)

    assert resolve_config_path("config.txt", project) == project / "config.txt"
    assert resolve_config_path("only-cwd.txt", project).resolve() == (cwd / "only-cwd.txt").resolve()

    absolute = project / "config.txt"
    assert resolve_config_path(absolute) == absolute


def test_missing_file_lists_locations(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigurationError) as exc_info:
        resolve_config_path("missing.txt", tmp_path / "project")

    message = str(exc_info.value)
    assert "Configuration file not found: missing.txt" in message
    assert "project" in message
