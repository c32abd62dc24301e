"""
Unit tests for repository configuration.

Tests cover:
- Defaults and managed keys
- Validation of trace, version and key options
- Loading from environment, including malformed integers
"""

import pytest

from smartrepo.config import RepositoryConfig, TraceStrategy
from smartrepo.errors import ConfigurationError


class TestDefaults:
    """Tests for default configuration."""

    def test_nothing_managed(self):
        config = RepositoryConfig()
        assert config.id_key == "id"
        assert config.managed_keys == frozenset()
        assert not config.tracing
        assert dict(config.scope) == {}

    def test_managed_keys(self):
        config = RepositoryConfig(
            timestamps=True,
            versioning=True,
            soft_delete=True,
            trace_strategy=TraceStrategy.UNBOUNDED,
        )
        assert config.managed_keys == {"createdAt", "updatedAt", "version", "_deleted", "_trace"}

    def test_default_id_factory_gives_unique_strings(self):
        config = RepositoryConfig()
        first, second = config.id_factory(), config.id_factory()
        assert isinstance(first, str)
        assert first != second

    def test_default_clock_is_unix_ms(self):
        assert RepositoryConfig().clock() > 1_600_000_000_000

    def test_immutable(self):
        config = RepositoryConfig(scope={"tenantId": "t1"})
        with pytest.raises(AttributeError):
            config.versioning = True
        with pytest.raises(TypeError):
            config.scope["tenantId"] = "t2"

    def test_scope_copied(self):
        scope = {"tenantId": "t1"}
        config = RepositoryConfig(scope=scope)
        scope["tenantId"] = "t2"
        assert config.scope["tenantId"] == "t1"


class TestValidation:
    """Tests for RepositoryConfig.validate."""

    def test_strategy_from_string(self):
        config = RepositoryConfig(trace_strategy="BOUNDED", trace_limit=5)
        assert config.trace_strategy == TraceStrategy.BOUNDED

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig(trace_strategy="forever")
        assert exc_info.value.option == "trace_strategy"

    def test_bounded_requires_limit(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig(trace_strategy="bounded")
        assert exc_info.value.option == "trace_limit"

    @pytest.mark.parametrize("limit", [0, -1, 2.5, True])
    def test_bounded_limit_must_be_positive_int(self, limit):
        with pytest.raises(ConfigurationError):
            RepositoryConfig(trace_strategy="bounded", trace_limit=limit)

    def test_limit_without_bounded_rejected(self):
        with pytest.raises(ConfigurationError):
            RepositoryConfig(trace_strategy="latest", trace_limit=3)
        with pytest.raises(ConfigurationError):
            RepositoryConfig(trace_limit=3)

    def test_negative_initial_version(self):
        with pytest.raises(ConfigurationError):
            RepositoryConfig(versioning=True, initial_version=-1)

    def test_managed_keys_must_be_distinct(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig(timestamps=True, versioning=True, version_key="updatedAt")
        assert exc_info.value.option == "version_key"

    def test_managed_key_cannot_be_id(self):
        with pytest.raises(ConfigurationError):
            RepositoryConfig(soft_delete=True, soft_delete_key="id")

    def test_scope_cannot_be_managed(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig(versioning=True, scope={"version": 1})
        assert exc_info.value.option == "scope"

    def test_disabled_keys_not_checked(self):
        config = RepositoryConfig(version_key="updatedAt", timestamps=True)
        assert "updatedAt" in config.managed_keys

    def test_error_code(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig(id_key="")
        assert exc_info.value.code == "CONFIGURATION_ERROR"


class TestFromEnv:
    """Tests for RepositoryConfig.from_env."""

    def test_defaults_without_env(self, monkeypatch):
        for name in (
            "ID_KEY",
            "TIMESTAMPS",
            "VERSIONING",
            "INITIAL_VERSION",
            "SOFT_DELETE",
            "TRACE_STRATEGY",
            "TRACE_KEY",
            "TRACE_LIMIT",
        ):
            monkeypatch.delenv(f"SMARTREPO_{name}", raising=False)
        assert RepositoryConfig.from_env() == RepositoryConfig()

    def test_reads_switches(self, monkeypatch):
        monkeypatch.setenv("SMARTREPO_TIMESTAMPS", "true")
        monkeypatch.setenv("SMARTREPO_VERSIONING", "TRUE")
        monkeypatch.setenv("SMARTREPO_INITIAL_VERSION", "0")
        monkeypatch.setenv("SMARTREPO_SOFT_DELETE", "true")
        monkeypatch.setenv("SMARTREPO_TRACE_STRATEGY", "bounded")
        monkeypatch.setenv("SMARTREPO_TRACE_LIMIT", "10")

        config = RepositoryConfig.from_env()
        assert config.timestamps
        assert config.versioning
        assert config.initial_version == 0
        assert config.soft_delete
        assert config.trace_strategy == TraceStrategy.BOUNDED
        assert config.trace_limit == 10

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("SMARTREPO_VERSIONING", "false")
        config = RepositoryConfig.from_env(versioning=True, scope={"tenantId": "t1"})
        assert config.versioning
        assert config.scope["tenantId"] == "t1"

    def test_invalid_env_rejected(self, monkeypatch):
        monkeypatch.setenv("SMARTREPO_TRACE_STRATEGY", "bounded")
        monkeypatch.delenv("SMARTREPO_TRACE_LIMIT", raising=False)
        with pytest.raises(ConfigurationError):
            RepositoryConfig.from_env()

    @pytest.mark.parametrize(
        "name,option", [("INITIAL_VERSION", "initial_version"), ("TRACE_LIMIT", "trace_limit")]
    )
    def test_malformed_integer_env(self, monkeypatch, name, option):
        monkeypatch.setenv("SMARTREPO_TRACE_STRATEGY", "bounded")
        monkeypatch.setenv("SMARTREPO_TRACE_LIMIT", "5")
        monkeypatch.setenv(f"SMARTREPO_{name}", "ten")
        with pytest.raises(ConfigurationError) as exc_info:
            RepositoryConfig.from_env()
        assert exc_info.value.option == option

    def test_trace_limit_read_for_overridden_strategy(self, monkeypatch):
        monkeypatch.delenv("SMARTREPO_TRACE_STRATEGY", raising=False)
        monkeypatch.setenv("SMARTREPO_TRACE_LIMIT", "4")

        config = RepositoryConfig.from_env(trace_strategy="bounded")
        assert config.trace_strategy == TraceStrategy.BOUNDED
        assert config.trace_limit == 4

        config = RepositoryConfig.from_env(trace_strategy=TraceStrategy.BOUNDED, trace_limit=2)
        assert config.trace_limit == 2

    def test_trace_limit_ignored_without_bounded(self, monkeypatch):
        monkeypatch.setenv("SMARTREPO_TRACE_STRATEGY", "bounded")
        monkeypatch.setenv("SMARTREPO_TRACE_LIMIT", "4")
        config = RepositoryConfig.from_env(trace_strategy="unbounded")
        assert config.trace_limit is None
