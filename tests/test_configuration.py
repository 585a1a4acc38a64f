import pytest

from ofcontrib.cache import CacheType
from ofcontrib.configuration import (
    DEFAULT_CACHE,
    DEFAULT_HOST,
    DEFAULT_MAX_CACHE_SIZE,
    DEFAULT_MAX_EVENT_STREAM_RETRIES,
    DEFAULT_RESOLVER,
    ProviderConfiguration,
    ResolverType,
    default_configuration,
)


def test_defaults_with_empty_environment():
    cfg = default_configuration(environ={})
    assert cfg.cache_type is CacheType.LRU
    assert cfg.host == "localhost"
    assert cfg.max_cache_size == 1000
    assert cfg.event_stream_connection_max_attempts == 5
    assert cfg.resolver is ResolverType.RPC
    assert cfg.tls_enabled is False
    assert cfg.port == 0
    assert cfg.certificate_path == ""


def test_resolver_type_values():
    assert ResolverType("rpc") is ResolverType.RPC
    assert ResolverType("in-process") is ResolverType.IN_PROCESS


def test_environment_overrides():
    env = {
        "FLAGD_HOST": "flags.example.com",
        "FLAGD_PORT": "9090",
        "FLAGD_SOCKET_PATH": "/socket",
        "FLAGD_MAX_CACHE_SIZE": "2500",
        "FLAGD_CACHE": "mem",
        "FLAGD_MAX_EVENT_STREAM_RETRIES": "2",
        "FLAGD_RESOLVER": "in-process",
        "FLAGD_OFFLINE_FLAG_SOURCE_PATH": "/flags.json",
        "FLAGD_SOURCE_SELECTOR": "app=myapp",
    }
    cfg = default_configuration(environ=env)
    assert cfg.host == "flags.example.com"
    assert cfg.port == 9090
    assert cfg.socket_path == "/socket"
    assert cfg.max_cache_size == 2500
    assert cfg.cache_type is CacheType.IN_MEMORY
    assert cfg.event_stream_connection_max_attempts == 2
    assert cfg.resolver is ResolverType.IN_PROCESS
    assert cfg.offline_flag_source_path == "/flags.json"
    assert cfg.selector == "app=myapp"
    assert cfg.tls_enabled is False


def test_certificate_path_enables_tls():
    cfg = default_configuration(environ={"FLAGD_SERVER_CERT_PATH": "/path"})
    assert cfg.tls_enabled is True
    assert cfg.certificate_path == "/path"


def test_tls_flag_enables_tls_without_certificate():
    cfg = default_configuration(environ={"FLAGD_TLS": "true"})
    assert cfg.tls_enabled is True
    assert cfg.certificate_path == ""


def test_tls_flag_other_than_true_is_ignored():
    cfg = default_configuration(environ={"FLAGD_TLS": "yes"})
    assert cfg.tls_enabled is False


@pytest.mark.parametrize(
    "name, attribute, default",
    [
        ("FLAGD_PORT", "port", 0),
        ("FLAGD_MAX_CACHE_SIZE", "max_cache_size", DEFAULT_MAX_CACHE_SIZE),
        (
            "FLAGD_MAX_EVENT_STREAM_RETRIES",
            "event_stream_connection_max_attempts",
            DEFAULT_MAX_EVENT_STREAM_RETRIES,
        ),
    ],
)
def test_invalid_integers_keep_defaults(name, attribute, default):
    cfg = default_configuration(environ={name: "not-a-number"})
    assert getattr(cfg, attribute) == default


def test_invalid_cache_falls_back_to_default():
    cfg = ProviderConfiguration(cache_type=CacheType.DISABLED)
    cfg.update_from_env({"FLAGD_CACHE": "bogus"})
    assert cfg.cache_type is DEFAULT_CACHE


def test_disabled_cache_from_environment():
    cfg = default_configuration(environ={"FLAGD_CACHE": "disabled"})
    assert cfg.cache_type is CacheType.DISABLED


def test_invalid_resolver_falls_back_to_default():
    cfg = ProviderConfiguration(resolver=ResolverType.IN_PROCESS)
    cfg.update_from_env({"FLAGD_RESOLVER": "bogus"})
    assert cfg.resolver is DEFAULT_RESOLVER


def test_update_keeps_values_for_unset_variables():
    cfg = ProviderConfiguration(host="myHost", port=9090, selector="s")
    cfg.update_from_env({})
    assert cfg.host == "myHost"
    assert cfg.port == 9090
    assert cfg.selector == "s"


def test_empty_variables_are_ignored():
    cfg = default_configuration(environ={"FLAGD_HOST": "", "FLAGD_PORT": ""})
    assert cfg.host == DEFAULT_HOST
    assert cfg.port == 0


def test_update_reads_process_environment(monkeypatch):
    monkeypatch.setenv("FLAGD_HOST", "envhost")
    cfg = ProviderConfiguration()
    cfg.update_from_env()
    assert cfg.host == "envhost"