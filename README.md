# ofcontrib

Feature flag providers and evaluation hooks, built on the standard library
only.

## What is in the package

- `ofcontrib.model` holds the shared types. These are `ResolutionDetails`,
  `EvaluationDetails`, `ResolutionError` with its `ErrorCode`, `Reason`,
  `FlagType`, `Event` with its `EventType`, `ProviderState`, `HookContext`,
  `Metadata` and `FlagMetadata`. It also defines the abstract `FlagService`
  that backs the flagd provider.
- `ofcontrib.provider.FlagdProvider` resolves flags with flagd. It can
  resolve them remotely over RPC or in-process.
- `ofcontrib.rpc.RpcService` talks to a flagd server. It uses the Connect
  JSON protocol over HTTP/1.1 and can connect over TCP, TLS or a unix socket.
  It caches results whose reason is `STATIC` and serves them later with
  reason `CACHED`. It listens to the server's event stream and reconnects
  with exponential back-off (`ofcontrib.retry.RetryCounter`). After the
  retries run out it disables the cache and emits a `PROVIDER_ERROR` event.
- `ofcontrib.in_process.InProcessService` evaluates flags locally through an
  `Evaluator`. The evaluator is fed by a `FlagSync` source. When a selector is
  set, it adds the `scope` metadata to each result.
- `ofcontrib.cache` provides `InMemoryCache`, `LRUCache` and `CacheService`.
  `CacheService` chooses the cache from a `CacheType` (`lru`, `mem` or
  `disabled`).
- `ofcontrib.configcat.ConfigCatProvider` maps evaluations from a
  ConfigCat-style client onto resolution details with reasons, variants and
  error codes. `resolve_object_details` parses a string setting as a JSON
  object.
- Hooks:
  - `ofcontrib.metrics.MetricsHook` counts active, requested, successful and
    failed evaluations on a `Meter`. It can add attributes taken from flag
    metadata, either through `DimensionDescription`s or through an attribute
    mapper.
  - `ofcontrib.traces.TracesHook` adds a `feature_flag` event to the current
    span after an evaluation. On an error it records an `exception` event.
    The span's status is set to error only when `set_error_status=True`.
  - `ofcontrib.validator.ValidatorHook` runs a validator on every evaluated
    value. For example, `ofcontrib.regex.hex_validator()` accepts hex colours
    such as `#123` or `#112233`.

## Installation

```
pip install ofcontrib
```

To run the test suite:

```
pip install "ofcontrib[test]"
pytest
```

## Using the flagd provider

```python
from ofcontrib.provider import FlagdProvider

provider = FlagdProvider(host="localhost", port=8013)
provider.initialize()          # blocks until the service reports ready
details = provider.resolve_boolean_details("my-flag", False, {"targetingKey": "user-1"})
print(details.value, details.reason, details.error_code)
provider.shutdown()
```

For in-process resolution, pass `resolver="in-process"` together with an
`evaluator` and a `flag_sync`. If either is missing, `initialize()` raises
`RuntimeError` and every resolve method returns the default value with a
`PROVIDER_NOT_READY` error.

Options given to `FlagdProvider` as keywords take priority over environment
variables. Environment variables take priority over the defaults.

## Configuring flagd from the environment

`ofcontrib.configuration.default_configuration` reads these variables. You
can also call `ProviderConfiguration.update_from_env` with any mapping.

| Variable | Meaning | Default |
|---|---|---|
| `FLAGD_HOST` | server host | `localhost` |
| `FLAGD_PORT` | server port | 8013 (rpc) / 8015 (in-process), filled in by the provider |
| `FLAGD_TLS` | `true` enables TLS | off |
| `FLAGD_SOCKET_PATH` | unix socket path | unset |
| `FLAGD_SERVER_CERT_PATH` | CA certificate path; setting it enables TLS | unset |
| `FLAGD_CACHE` | `lru`, `mem` or `disabled` | `lru` |
| `FLAGD_MAX_CACHE_SIZE` | LRU size | 1000 |
| `FLAGD_MAX_EVENT_STREAM_RETRIES` | event stream retry attempts | 5 |
| `FLAGD_RESOLVER` | `rpc` or `in-process` | `rpc` |
| `FLAGD_SOURCE_SELECTOR` | selector for in-process sync | unset |
| `FLAGD_OFFLINE_FLAG_SOURCE_PATH` | local flag source for in-process mode | unset |

A number that cannot be parsed is logged as an error, and the value already
set is kept. An unknown cache type or resolver falls back to the default.
`ProviderLogger` emits that message only when it was created with a
verbosity.

## Hooks

```python
from ofcontrib.metrics import Meter, MetricsHook
from ofcontrib.traces import Span, TracesHook, use_span
from ofcontrib.regex import hex_validator
from ofcontrib.validator import ValidatorHook

meter = Meter()
metrics = MetricsHook(meter)
# ... run before / after / error / finally_after around evaluations ...
for metric in meter.collect():
    print(metric.name, [point.value for point in metric.data_points])

traces = TracesHook(set_error_status=True)
with use_span(Span("request")) as span:
    ...  # traces.after(...) records on `span`

validator = ValidatorHook(hex_validator())
```

`ValidatorHook.after` raises `ofcontrib.regex.ValidationError` in two cases:
when the value is not a string, and when the string does not match the
expression.

## What the package does not do

- It has no flag evaluator and no flag sync source of its own.
  In-process mode needs an `Evaluator` and a `FlagSync` from the caller,
  including any targeting-rule logic and offline file reading.
- It has no ConfigCat client. `ConfigCatProvider` needs an object that
  provides the four `get_*_value_details` methods of `ConfigCatClient`.
- `Meter` and `Span` keep metrics and trace events in memory only. Nothing is
  exported to a telemetry backend.
- The `otel_intercept` option is stored in the configuration but has no
  effect on the RPC client.
- There is no command-line program.