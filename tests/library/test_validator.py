"""
Unit tests for selection validation.

Tests requires and conflicts checking, error messages, and custom
module source checks.
"""

from itertools import combinations

import pytest

from forge_library.compiler import ValidationFailedError
from forge_library.compiler import validate_options
from forge_library.compiler import validate_selection
from forge_library.models import CompileOptions
from forge_library.registry import ModuleRegistry


@pytest.mark.unit
class TestValidateSelection:
    """Test validate_selection against the packaged catalog."""

    def test_missing_requirement_reported(self, registry: ModuleRegistry) -> None:
        """Test HTTP/2 without SSL reports the missing requirement."""
        result = validate_selection(["http_v2_module"], registry)

        assert result.valid is False
        assert result.errors == ['Module "HTTP/2" requires "SSL/HTTPS"']

    def test_satisfied_requirement_is_valid(self, registry: ModuleRegistry) -> None:
        """Test HTTP/2 with SSL is valid."""
        result = validate_selection(["http_ssl_module", "http_v2_module"], registry)

        assert result.valid is True
        assert result.errors == []

    def test_conflict_reported_from_both_sides(self, registry: ModuleRegistry) -> None:
        """Test a mutually declared conflict is reported once per module."""
        result = validate_selection(["naxsi", "modsecurity_nginx"], registry)

        assert result.valid is False
        assert result.errors == [
            'Module "NAXSI WAF" conflicts with "ModSecurity WAF"',
            'Module "ModSecurity WAF" conflicts with "NAXSI WAF"',
        ]

    def test_unknown_module_reported(self, registry: ModuleRegistry) -> None:
        """Test unknown ids are reported and not checked further."""
        result = validate_selection(["http_ssl_module", "nope"], registry)

        assert result.valid is False
        assert result.errors == ["Unknown module: nope"]

    def test_all_errors_collected(self, registry: ModuleRegistry) -> None:
        """Test every problem is reported, not just the first."""
        result = validate_selection(
            ["http_v2_module", "nginx_upstream_check_module", "ngx_http_upstream_fair_module", "ghost"],
            registry,
        )

        assert len(result.errors) == 4
        assert result.errors[0] == 'Module "HTTP/2" requires "SSL/HTTPS"'
        assert result.errors[-1] == "Unknown module: ghost"

    def test_duplicates_checked_once(self, registry: ModuleRegistry) -> None:
        """Test repeated ids do not duplicate errors."""
        result = validate_selection(["http_v2_module", "http_v2_module"], registry)

        assert len(result.errors) == 1

    def test_empty_selection_is_valid(self, registry: ModuleRegistry) -> None:
        """Test selecting nothing is valid."""
        assert validate_selection([], registry).valid is True

    def test_default_selection_is_valid(self, registry: ModuleRegistry) -> None:
        """Test the modules selected by default form a valid selection."""
        assert validate_selection(registry.default_selection(), registry).valid is True

    def test_transitive_requirement_only_checks_direct_edges(self, registry: ModuleRegistry) -> None:
        """Test each module reports only its own missing requirements."""
        result = validate_selection(["stream_lua_nginx_module"], registry)

        assert result.errors == [
            'Module "Stream Lua" requires "TCP/UDP Proxy"',
            'Module "Stream Lua" requires "Lua"',
        ]


@pytest.mark.unit
class TestValidateSelectionExhaustive:
    """Check validity against the definition on every subset of a small catalog."""

    def test_every_subset_matches_definition(self, small_registry: ModuleRegistry) -> None:
        """Test valid iff requires are closed and no conflicting pair is selected."""
        ids = [m.id for m in small_registry.list_modules()]

        for size in range(len(ids) + 1):
            for subset in combinations(ids, size):
                chosen = set(subset)
                requires_ok = all(
                    set(small_registry.get_module(m).requires) <= chosen for m in chosen
                )
                conflict_free = not ({"d", "e"} <= chosen)

                result = validate_selection(subset, small_registry)

                assert result.valid == (requires_ok and conflict_free), subset
                assert result.valid == (not result.errors)


@pytest.mark.unit
class TestValidateOptions:
    """Test full option validation including custom sources."""

    def test_valid_options(self, registry: ModuleRegistry) -> None:
        """Test a valid selection with an allowed custom source passes."""
        options = CompileOptions(
            version="1.26.3",
            modules=["http_ssl_module"],
            custom_modules=["https://github.com/example/nginx-extra.git"],
        )

        result = validate_options(options, registry, ["github.com"])

        assert result.valid is True

    def test_bad_custom_source_reported_with_position(self, registry: ModuleRegistry) -> None:
        """Test custom sources are checked and reported by position."""
        options = CompileOptions(
            version="1.26.3",
            modules=["http_ssl_module"],
            custom_modules=[
                "https://github.com/example/ok.git",
                "http://github.com/example/plain.git",
            ],
        )

        result = validate_options(options, registry, ["github.com"])

        assert result.valid is False
        assert result.errors == [
            "Custom module #2 (http://github.com/example/plain.git): only https URLs are allowed"
        ]

    def test_selection_and_source_errors_combined(self, registry: ModuleRegistry) -> None:
        """Test selection errors come first, followed by source errors."""
        options = CompileOptions(
            version="1.26.3",
            modules=["http_v2_module"],
            custom_modules=["https://evil.example.com/x/y.git"],
        )

        result = validate_options(options, registry, ["github.com"])

        assert len(result.errors) == 2
        assert result.errors[0].startswith('Module "HTTP/2"')
        assert "not in the allowed source hosts" in result.errors[1]


@pytest.mark.unit
class TestValidationFailedError:
    """Test the error raised when no task may be created."""

    def test_carries_all_errors(self) -> None:
        """Test the exception keeps every error and joins them in its message."""
        error = ValidationFailedError(["one", "two"])

        assert error.errors == ["one", "two"]
        assert str(error) == "one; two"
        assert isinstance(error, ValueError)
