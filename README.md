# dnscrypt_proxy

Building blocks for a filtering, caching DNS proxy, built on `dnspython`.

## What is in the package

- **DNS message helpers** (`dnscrypt_proxy.dnsutils`): empty, truncated, refused and
  NXDOMAIN responses built from a query (`empty_response_from_message`,
  `truncated_response`, `refused_response_from_message`,
  `name_error_response_from_message`), TTL handling (`get_min_ttl`, `set_max_ttl`,
  `update_ttl`), EDNS0 padding (`has_edns0_padding`, `add_edns0_padding_if_none_found`,
  `remove_edns0_options`), query-name normalisation (`normalize_qname`,
  `normalize_raw_qname`), raw header access (`transaction_id`, `set_transaction_id`,
  `rcode`, `has_tc_flag`), TXT escape decoding (`pack_txt_rr`) and DoH response
  padding sizes (`doh_padded_len`).
- **Query context** (`dnscrypt_proxy.context`): `QueryContext` carries the state of
  one query through the plugins. `PluginAction` and `ReturnCode` record what happened
  to it; `reject()` and `synthesize()` set them, and `client_ip()` gives the client
  address, or `None` for internal queries.
- **Name pattern matching** (`dnscrypt_proxy.pattern_matcher`): `PatternMatcher`
  handles exact (`=name`), suffix (`name`, `*.name`), prefix (`name*`), substring
  (`*name*`) and glob rules. `eval()` returns a `PatternMatch` (the matching rule and
  the value stored with it) or `None`.
- **Plugins**, each with an `eval(ctx, msg)` method:
  - `BlockNamePlugin`, `BlockNameResponsePlugin` (CNAME, SVCB and HTTPS targets) and
    `AllowNamePlugin`, with `BlockedNames` and `parse_name_rules`, in `name_filter`;
  - `BlockIPPlugin` and `AllowIPPlugin`, with `IPRuleSet` and `parse_ip_rules`, in
    `ip_filter`;
  - `BlockIPv6Plugin`, `BlockUnqualifiedPlugin` and `FirefoxPlugin` in
    `simple_plugins`;
  - `BlockUndelegatedPlugin` and `is_undelegated` in `undelegated`;
  - `CaptivePortalPlugin` in `captive_portal`;
  - `CacheReaderPlugin` and `CacheWriterPlugin`, sharing a `ResponseCache` backed by
    a `SieveCache`, in `cache`;
  - `CloakPlugin`, with `parse_cloaking_rules`, in `cloak`;
  - `QueryLogPlugin` and `NxLogPlugin` (TSV or LTSV lines) in `query_logs`;
  - `ECSPlugin`, `PayloadSizePlugin` and `QueryMetaPlugin` in `edns_plugins`.
- **Captive portal listeners** (`dnscrypt_proxy.captive_portal`): `cold_start(map_file,
  listen_addresses)` loads a map of names to addresses and answers matching queries
  on UDP sockets in background threads until `CaptivePortalHandler.stop()` is called.
- **Utilities**: line and string helpers in `common`, DNSCrypt query padding (`pad`,
  `unpad`, `padded_query_length`) in `padding`, the adaptive `QuestionSizeEstimator`
  in `estimators`, rotating, compressed log files (`open_log`, `RotatingLogWriter`) in
  `logger`, and PID files (`pid_file_create`, `pid_file_remove`) in `pidfile`.

## Installation

```
pip install .
```

## Example

```python
import dns.message
from dnscrypt_proxy.pattern_matcher import PatternMatcher
from dnscrypt_proxy.dnsutils import normalize_qname, refused_response_from_message

matcher = PatternMatcher()
matcher.add("ads.example.com", None, 1)
matcher.add("*tracker*", None, 2)

query = dns.message.make_query("Sub.Ads.Example.com.", "A")
qname = normalize_qname(query.question[0].name.to_text())
match = matcher.eval(qname)
if match:
    response = refused_response_from_message(query, False, None, None, 600)
```

Rule files have one rule per line, with `#` comments. A name rule may be followed by
`@schedule`; `parse_name_rules` looks the schedule up in the mapping it is given, and
the rule only applies while that object's `match()` returns true.

## What the package does not do

The package is a library of parts. It has no command-line program and no
configuration-file loader, and it does not run a DNS server: apart from the captive
portal listeners, nothing listens for client queries or chains the plugins together.
It does not send queries to upstream resolvers, does not encrypt or decrypt DNSCrypt
or DoH traffic (only the padding rules are provided), and does not parse weekly
schedules itself; callers supply schedule objects.

## Running the tests

```
pip install .[test]
pytest
```