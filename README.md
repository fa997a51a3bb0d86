# vulnscan

The core of a vulnerability and misconfiguration scanner for container images,
filesystems and repositories. The detection back ends (layer merging, OS package
and library vulnerability lookup, artifact inspection, the cache and the network
transport) are objects you pass in; this package wires them together, turns their
output into results and reports, and converts everything to and from RPC messages.

## Modules

- `vulnscan.types`: dataclasses for packages, libraries, applications, OS,
  layers, blob and artifact infos, detected vulnerabilities and
  misconfigurations, `ScanOptions`, `Result`, `Metadata` and `Report`; the
  `Severity` enum (`Severity.parse`), `compare_severity_string`,
  `MisconfStatus`, `ResultClass`, `new_vuln_type`, `new_security_check` and
  `sort_by_severity` (package name, installed version, highest severity first,
  then vulnerability ID).
- `vulnscan.local_scanner`: `LocalScanner(applier, ospkg_detector, library_detector)`
  and its `scan(target, artifact_key, blob_keys, options)`, which returns
  `(results, os)`. It applies layers through `applier.apply_layers(artifact_id, blob_ids)`,
  detects OS package vulnerabilities through
  `ospkg_detector.detect(image_name, os_family, os_name, created, pkgs)`,
  library vulnerabilities through `library_detector.detect(app_type, libraries)`,
  and turns config-file policy results into one result per file. Skip files and
  skip directories are honoured (`skipped`); `merge_pkgs` adds removed packages
  when `scan_removed_packages` is set. An applier may raise `UnknownOSError` or
  `NoPackagesDetectedError` carrying the partial detail; a detector may raise
  `UnsupportedOSError`. Other failures are raised as `ScanFailedError`.
- `vulnscan.scanner`: `Scanner(driver, artifact)`; `scan_artifact(options)`
  calls `artifact.inspect()`, passes the reference to `driver.scan(...)` and
  returns a `Report`. Failures are raised as `ArtifactScanError`.
- `vulnscan.rpcmessages`: the request, response and message dataclasses
  (`ScanRequest`, `ScanResponse`, `PutArtifactRequest`, `PutBlobRequest`,
  `MissingBlobsRequest`, `MissingBlobsResponse`, `RpcVulnerability`, ...).
- `vulnscan.convert`: two-way conversion between the types and the RPC
  messages (`to_rpc_vulns`, `from_rpc_results`, `to_rpc_blob_info`,
  `to_rpc_scan_response`, ...).
- `vulnscan.retry`: `retry(f, max_retries=10, sleep=time.sleep)` retries `f`
  with exponential backoff only while it raises `RpcError` with code
  `ErrorCode.UNAVAILABLE`; any other error is raised at once.
- `vulnscan.client`: `RemoteScanner(custom_headers, client)`; its `scan` builds
  a `ScanRequest`, calls `client.scan(request, headers)` through `retry` and
  converts the response. If the custom headers contain a reserved header
  (`Accept`, `Content-Type`, `Twirp-Version`) none are sent. Failures are raised
  as `RemoteScanError`.
- `vulnscan.server`: `ScanServer(local_scanner, result_client)` with
  `scan(request)`, and `CacheServer(cache)` with `put_artifact`, `put_blob` and
  `missing_blobs`. Failures are raised as `ServerError`.
- `vulnscan.dockerconf`: `DockerConfig.from_env` and
  `get_docker_option(timeout, environ=None)`, reading `TRIVY_USERNAME`,
  `TRIVY_PASSWORD`, `TRIVY_REGISTRY_TOKEN`, `TRIVY_INSECURE` and `TRIVY_NON_SSL`.
- `vulnscan.utils`: `default_cache_dir`, `cache_dir`, `set_cache_dir`,
  `file_walk`, `filter_targets` and `copy_file`.
- `vulnscan.versions`: `format_version` and `format_src_version`
  (`epoch:version-release`).

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Examples

Format a package version:

```python
from vulnscan.types import Package
from vulnscan.versions import format_version

format_version(Package(name="vim", epoch=2, version="1.2.3", release="alpha"))
# '2:1.2.3-alpha'
```

Decide whether a file is excluded by skip rules:

```python
from vulnscan.local_scanner import skipped

skipped("app/Gemfile.lock", [], ["/app"])  # True
```

Read registry options from a mapping instead of the process environment:

```python
from datetime import timedelta
from vulnscan.dockerconf import get_docker_option

option = get_docker_option(timedelta(seconds=30), {"TRIVY_USERNAME": "user"})
option.user_name  # 'user'
```

## What it does not do

- It has no vulnerability database and does not analyse images, archives or
  directories itself: the applier, the detectors, the artifact and the cache
  are supplied by the caller.
- It opens no network connections and listens on no port. `RemoteScanner`
  calls whatever client object it is given, and `ScanServer` and
  `CacheServer` are handlers to be mounted in a server of your choosing.
- It has no command-line program.