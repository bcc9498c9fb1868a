# rpcgate

`rpcgate` sits in front of a blockchain RPC node and forwards HTTP and
WebSocket traffic to it. Only clients whose IP address passes its firewall
get through. Access rules come from a configuration file and can be
extended at run time by jobs: permanent IP/CIDR or account rules, paid
temporary access for an account, and webhook registration. Firewall
decisions are reported to registered webhooks as JSON events.

## Installation

```
pip install rpcgate
```

To run the test suite:

```
pip install "rpcgate[test]"
pytest
```

## Running the gateway

The package installs one command:

```
rpcgate --help
```

Options:

- `--config PATH` – the TOML configuration (default `config.toml`)
- `--data-dir PATH` – the service data directory (default
  `~/.secure-rpc-gateway`); it is created if missing
- `--log-level LEVEL` – `debug` (default), `info`, `warning`, `error` or
  `critical`; applies to the `rpcgate` loggers, everything else logs at INFO

The command loads the configuration, creates the service context (data
directory and firewall), starts a task that drops expired temporary access
every 60 seconds, and serves the gateway until interrupted. A configuration
error or an unusable data directory or listen address prints
`error: ...` and exits with status 1.

## Configuration

The configuration is a TOML file with these tables:

```toml
[rpc]
listen_addr = "127.0.0.1:9944"
proxy_to_url = "http://127.0.0.1:9933"
# optional, defaults shown
max_body_size_bytes = 10485760   # 10 MB
request_timeout_secs = 30

[firewall]
allow_ips = ["127.0.0.1", "10.0.0.0/8"]
allow_accounts = ["<ss58-or-hex-address>"]
allow_unrestricted_access = false

[webhooks]
event_urls = ["http://hooks.example.com/rpc-events"]
```

`[rpc]` and `[firewall]` are required; `[webhooks]` and every key in
`[firewall]` are optional. `listen_addr` is an IPv4 address or a bracketed
IPv6 address with a port. Accounts are given as SS58 addresses or as 64 hex
digits (optionally `0x`-prefixed). Invalid IP/CIDR entries, account
addresses, URLs or numbers raise `rpcgate.errors.ConfigError`.

Values can be overridden from the environment with the prefix `SECURE_RPC__`
and `__` between levels (matched case-insensitively), for example
`SECURE_RPC__RPC__REQUEST_TIMEOUT_SECS=60` or
`SECURE_RPC__FIREWALL__ALLOW_UNRESTRICTED_ACCESS=true`. Override values are
strings, so only scalar settings can be overridden this way; the lists
(`allow_ips`, `allow_accounts`, `event_urls`) must come from the file.

In code:

- `rpcgate.config.load_config(path, environ=None)` reads a TOML file and
  applies overrides from `environ` (the process environment when `None`);
- `rpcgate.config.parse_service_config(data)` builds a `ServiceConfig`
  (with `RpcConfig`, `FirewallConfig` and `WebhookConfig`) from an already
  decoded mapping.

## How requests are handled

For every incoming request the client IP is checked, in this order:

1. unrestricted access enabled in the configuration,
2. the configured `allow_ips` networks,
3. networks added at run time by jobs.

A client that matches none of these receives `403 Access Denied`.

Allowed HTTP requests are forwarded to `proxy_to_url` with the original
path and query (`rpcgate.rpc.build_target_url`); the `Host`,
`Content-Length`, `Transfer-Encoding` and `Connection` headers are not
passed on and redirects are not followed. The client then receives:

- the backend's status, headers and body,
- `400` if the target URL is invalid,
- `413` if the body exceeds `max_body_size_bytes`,
- `408` if the backend does not answer within `request_timeout_secs`,
- `503` with the error text if the backend cannot be reached.

CORS preflight requests are answered directly, allowing any origin and
header and the methods `GET`, `POST` and `OPTIONS`; other responses to
requests with an `Origin` header carry `Access-Control-Allow-Origin: *`.

WebSocket upgrade requests are bridged to the backend's `ws://` or `wss://`
endpoint (`rpcgate.rpc.backend_ws_url`; `wss` when `proxy_to_url` uses
`https` or `wss`). Text and binary messages are passed in both directions;
when the backend closes, its close code is passed to the client. If the
backend cannot be reached or the handshake fails, the client connection is
closed with an error code.

`rpcgate.rpc.create_app(ctx)` returns the `aiohttp` application and
`rpcgate.rpc.start_rpc_gateway(ctx)` serves it on `listen_addr` until
cancelled.

## Service context

`rpcgate.context.create_context(service_config, data_dir=None)` creates the
data directory (default `rpcgate.context.default_data_dir()`, i.e.
`~/.secure-rpc-gateway`) and returns a `SecureRpcContext` holding the
configuration, the data directory and a fresh `Firewall`.
`SecureRpcContext.run_cleanup(interval=60)` drops expired temporary access
immediately and then every `interval` seconds, forever.

## Firewall

`rpcgate.firewall.Firewall(config, webhook_urls=(), *, sender=None, clock=None)`
offers:

- `is_allowed(ip)` – the IP check described above;
- `is_account_allowed(account)` – unrestricted access, configured accounts,
  run-time accounts, then temporary grants; an expired grant is removed
  when checked and reported as `TemporaryAccessExpired`;
- `add_ip_rule(network)` and `add_account_rule(account)` – run-time rules,
  reported as `RuleAdded` only when new;
- `grant_temporary_access(account, record)` with a
  `TemporaryAccessRecord(granted_at, expires_at)`;
- `cleanup_expired_access()`;
- `add_webhook(url)` – registers a URL and reports `WebhookRegistered`.

Accounts may be passed as `rpcgate.accounts.AccountId32` or as text;
`rpcgate.accounts.parse_account(value)` accepts SS58 or 64 hex digits and
raises `rpcgate.errors.AddressParseError` otherwise.
`AccountId32.to_ss58(prefix=42)` gives the SS58 form, which is also its
`str()`.

`sender` replaces the HTTP POST used to deliver webhook events and `clock`
replaces the current-time function used for temporary access.

## Jobs

`rpcgate.jobs.handle_job(ctx, job_id, payload)` decodes a mapping of
arguments and dispatches to:

| Job ID | Handler            | Payload                                              |
|-------:|--------------------|------------------------------------------------------|
| 0      | `allow_access`     | `{"target": {"Ip": "10.0.0.0/8"}}` or `{"target": {"Account": "<address>"}}` |
| 1      | `pay_for_access`   | `{"beneficiary": "<address>", "duration_secs": 3600}` |
| 2      | `register_webhook` | `{"url": "https://hooks.example.com/events"}`        |

The handlers can also be called directly with `AllowAccessInput`
(holding an `AccessTarget` of `AccessKind.IP` or `AccessKind.ACCOUNT`),
`PayForAccessInput` and `RegisterWebhookInput`. `pay_for_access` returns
the `TemporaryAccessRecord` it granted.

`rpcgate.errors.InvalidJobInput` is raised for an unknown job id, missing
or mistyped fields, a malformed IP/CIDR or account, a zero duration, or a
webhook URL that is not `http`/`https` or has no host.

## Webhook events

Each registered URL receives a POST whose JSON body names the event and its
fields, for example:

```json
{"AccessGranted": {"source": "127.0.0.1", "access_type": "Permanent (Config)"}}
```

Events: `AccessGranted` (`source`, `access_type`: `Unrestricted`,
`Permanent (Config)`, `Permanent (Dynamic)` or `Temporary`),
`AccessDenied` (`source`), `TemporaryAccessExpired` (`account`),
`RuleAdded` (`rule_type`: `IP` or `Account`, `value`) and
`WebhookRegistered` (`url`). Delivery runs in the background; failures are
only logged.

## What this package does not do

- It does not connect to a blockchain or receive job calls from one. Jobs
  run only when the embedding application calls `handle_job` or a handler,
  and nothing checks who is calling them or that a payment was made.
- Requests to the gateway are checked by client IP only; account rules
  and temporary grants are kept by the firewall but no request carries an
  account to check them against.
- Firewall rules added at run time are held in memory and are lost on
  restart; the data directory is created but nothing is stored in it.