"""Configuration of the flagd provider, with environment variable overrides."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from ofcontrib.cache import CacheType
from ofcontrib.logger import ProviderLogger


class ResolverType(str, Enum):
    """How flags are resolved: remotely over RPC or in-process."""

    RPC = "rpc"
    IN_PROCESS = "in-process"


DEFAULT_MAX_CACHE_SIZE = 1000
DEFAULT_RPC_PORT = 8013
DEFAULT_IN_PROCESS_PORT = 8015
DEFAULT_MAX_EVENT_STREAM_RETRIES = 5
DEFAULT_TLS = False
DEFAULT_CACHE = CacheType.LRU
DEFAULT_HOST = "localhost"
DEFAULT_RESOLVER = ResolverType.RPC

FLAGD_HOST = "FLAGD_HOST"
FLAGD_PORT = "FLAGD_PORT"
FLAGD_TLS = "FLAGD_TLS"
FLAGD_SOCKET_PATH = "FLAGD_SOCKET_PATH"
FLAGD_SERVER_CERT_PATH = "FLAGD_SERVER_CERT_PATH"
FLAGD_CACHE = "FLAGD_CACHE"
FLAGD_MAX_CACHE_SIZE = "FLAGD_MAX_CACHE_SIZE"
FLAGD_MAX_EVENT_STREAM_RETRIES = "FLAGD_MAX_EVENT_STREAM_RETRIES"
FLAGD_RESOLVER = "FLAGD_RESOLVER"
FLAGD_SOURCE_SELECTOR = "FLAGD_SOURCE_SELECTOR"
FLAGD_OFFLINE_FLAG_SOURCE_PATH = "FLAGD_OFFLINE_FLAG_SOURCE_PATH"

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _parse_int(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    return int(text)


@dataclass
class ProviderConfiguration:
    """Settings of the flagd provider."""

    cache_type: CacheType = DEFAULT_CACHE
    certificate_path: str = ""
    event_stream_connection_max_attempts: int = DEFAULT_MAX_EVENT_STREAM_RETRIES
    host: str = DEFAULT_HOST
    max_cache_size: int = DEFAULT_MAX_CACHE_SIZE
    offline_flag_source_path: str = ""
    otel_intercept: bool = False
    port: int = 0
    resolver: ResolverType = DEFAULT_RESOLVER
    selector: str = ""
    socket_path: str = ""
    tls_enabled: bool = DEFAULT_TLS
    logger: ProviderLogger = field(default_factory=ProviderLogger, repr=False, compare=False)

    def update_from_env(self, environ: Mapping[str, str] | None = None) -> None:
        """Override settings from flagd environment variables that are set."""
        env = os.environ if environ is None else environ

        port_text = env.get(FLAGD_PORT, "")
        if port_text:
            try:
                self.port = _parse_int(port_text) & 0xFFFF
            except ValueError as err:
                self.logger.error(
                    err,
                    f"invalid env config for {FLAGD_PORT} provided, using default value: "
                    f"{DEFAULT_RPC_PORT} or {DEFAULT_IN_PROCESS_PORT} depending on resolver",
                )

        host = env.get(FLAGD_HOST, "")
        if host:
            self.host = host

        socket_path = env.get(FLAGD_SOCKET_PATH, "")
        if socket_path:
            self.socket_path = socket_path

        certificate_path = env.get(FLAGD_SERVER_CERT_PATH, "")
        if certificate_path or env.get(FLAGD_TLS, "") == "true":
            self.tls_enabled = True
            self.certificate_path = certificate_path

        cache_size_text = env.get(FLAGD_MAX_CACHE_SIZE, "")
        if cache_size_text:
            try:
                self.max_cache_size = _parse_int(cache_size_text)
            except ValueError as err:
                self.logger.error(
                    err,
                    f"invalid env config for {FLAGD_MAX_CACHE_SIZE} provided, "
                    f"using default value: {DEFAULT_MAX_CACHE_SIZE}",
                )

        cache_value = env.get(FLAGD_CACHE, "")
        if cache_value:
            try:
                self.cache_type = CacheType(cache_value)
            except ValueError:
                self.logger.info(
                    "invalid cache type configured: %s, falling back to default: %s",
                    cache_value,
                    DEFAULT_CACHE.value,
                )
                self.cache_type = DEFAULT_CACHE

        retries_text = env.get(FLAGD_MAX_EVENT_STREAM_RETRIES, "")
        if retries_text:
            try:
                self.event_stream_connection_max_attempts = _parse_int(retries_text)
            except ValueError as err:
                self.logger.error(
                    err,
                    f"invalid env config for {FLAGD_MAX_EVENT_STREAM_RETRIES} provided, "
                    f"using default value: {DEFAULT_MAX_EVENT_STREAM_RETRIES}",
                )

        resolver = env.get(FLAGD_RESOLVER, "")
        if resolver:
            try:
                self.resolver = ResolverType(resolver)
            except ValueError:
                self.logger.info(
                    "invalid resolver type: %s, falling back to default: %s",
                    resolver,
                    DEFAULT_RESOLVER.value,
                )
                self.resolver = DEFAULT_RESOLVER

        offline_path = env.get(FLAGD_OFFLINE_FLAG_SOURCE_PATH, "")
        if offline_path:
            self.offline_flag_source_path = offline_path

        selector = env.get(FLAGD_SOURCE_SELECTOR, "")
        if selector:
            self.selector = selector


def default_configuration(
    logger: ProviderLogger | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProviderConfiguration:
    """Defaults, overridden by any flagd environment variables that are set."""
    configuration = ProviderConfiguration(logger=logger or ProviderLogger())
    configuration.update_from_env(environ)
    return configuration