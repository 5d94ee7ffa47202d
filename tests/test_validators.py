"""Tests for input validation utilities."""

import pytest

from teamswarm.validators import (
    ValidationError,
    validate_agent_name,
    validate_request_prefix,
    validate_team_name,
)


class TestValidateAgentName:
    """Tests for validate_agent_name."""

    def test_valid_name_stripped(self):
        assert validate_agent_name("  researcher ") == "researcher"

    def test_spaces_and_symbols_allowed(self):
        assert validate_agent_name("code reviewer #2") == "code reviewer #2"

    @pytest.mark.parametrize("name", ["", "   ", "\t\n"])
    def test_empty(self, name):
        with pytest.raises(ValidationError, match="required"):
            validate_agent_name(name)

    def test_not_a_string(self):
        with pytest.raises(ValidationError, match="must be a string"):
            validate_agent_name(None)

    def test_too_long(self):
        validate_agent_name("a" * 64)
        with pytest.raises(ValidationError, match="too long"):
            validate_agent_name("a" * 65)

    def test_control_characters(self):
        with pytest.raises(ValidationError, match="control characters"):
            validate_agent_name("evil\x1b[31m")

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            validate_agent_name("")


class TestValidateTeamName:
    """Tests for validate_team_name."""

    @pytest.mark.parametrize("name", ["acme", "team-1", "my_team.v2", "A"])
    def test_valid(self, name):
        assert validate_team_name(name) == name

    @pytest.mark.parametrize("name", ["../etc", ".hidden", "a/b", "with space", "-dash"])
    def test_invalid_characters(self, name):
        with pytest.raises(ValidationError, match="invalid characters"):
            validate_team_name(name)

    def test_empty(self):
        with pytest.raises(ValidationError, match="required"):
            validate_team_name(" ")

    def test_too_long(self):
        with pytest.raises(ValidationError, match="too long"):
            validate_team_name("t" * 65)


class TestValidateRequestPrefix:

    @pytest.mark.parametrize("prefix", ["req", "shutdown", "plan_2"])
    def test_valid(self, prefix):
        assert validate_request_prefix(prefix) == prefix

    @pytest.mark.parametrize("prefix", ["", "Req", "a-b", None])
    def test_invalid(self, prefix):
        with pytest.raises(ValidationError):
            validate_request_prefix(prefix)
