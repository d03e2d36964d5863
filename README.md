# appledb

appledb reads the code-signing entitlements of the Mach-O executables in a
mounted Apple firmware image (IPSW) and stores them in a SQLite database behind
an HTTP API. You can then ask which executables of an operating system version
carry an entitlement, or compare the entitlements of two executables.

It installs three commands:

- `appledb-server` runs the HTTP API.
- `appledb` is the client used to dump, collect and upload entitlements.
- `appledb-migrate` manages the database schema.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Configuration

The server and the client read the same YAML file:

```yaml
listen_mode: "http://127.0.0.1:8080"
http_max_body_size: 104857600
database_path: "./appledb.sqlite"
```

- `listen_mode` is `http://IP:PORT` or `unix:///path/to/socket`. The host must
  be an IP address, not a name, and the port must be written out (port 80 given
  explicitly is treated as missing).
- `http_max_body_size` is the largest request body, in bytes, the server
  accepts; larger bodies are answered with HTTP 413.
- `database_path` is the SQLite file.

A missing field or a value of the wrong kind raises `appledb.config.ConfigError`.

## Running the server

```
appledb-server -c config.yaml
```

The database is created if needed and every pending schema step is applied on
start; the operating systems `ios`, `macos`, `watchos` and `tvos` are inserted
with the schema. Responses are gzip-compressed when the client asks for it.

Public routes, all `GET`, live under `/api/v1`:

- `/operating_systems/get`, `/operating_systems/get/{id}`
- `/operating_system_versions/get`, `/operating_system_versions/get/{id}`
- `/executables/get`, `/executables/get/{id}`
- `/executables/get_by_name/{name}`
- `/executables/get/{operating_system_version_id}/{entitlement_key}`
- `/entitlements/get`, `/entitlements/get/{id}`
- `/entitlements/executable/get/{id}`
- `/entitlements/diff/{from_executable_id}/{to_executable_id}`

Interactive documentation is served at `/api/v1/swagger`, the OpenAPI document
at `/api/v1/openapi.json`.

Admin routes, all `POST` with a JSON body, live under `/api/admin`:

- `/executable/entitlements` stores a firmware's executables and entitlements
  (this is what the client uploads). Executables already stored for that
  version are skipped.
- `/executable` gets or creates one executable.
- `/operating_system_version` creates an operating system version.

A failed request is answered with HTTP 500 and a body `{"reason": "..."}`.

## Using the client

The client reads `./config.yaml` unless given `-c`.

Print the entitlements of one executable as JSON:

```
appledb ent dump-ent -b /path/to/executable
```

Collect the entitlements of every executable under a mounted firmware and send
them to the server:

```
appledb -c config.yaml ent parse -m /mnt/ipsw ios -v 18.2
```

The platform is one of `ios`, `mac-os`, `watch-os`, `tv-os`. When the platform
or the version is left out, both are read from
`System/Library/CoreServices/SystemVersion.plist` (or
`root/System/Library/CoreServices/SystemVersion.plist`) under the mount point;
only the product name `iPhone OS` is recognised there.

List the operating systems the server knows:

```
appledb operating-system list
```

## Managing the schema

```
appledb-migrate -u ./appledb.sqlite status
appledb-migrate -u ./appledb.sqlite up
appledb-migrate -u ./appledb.sqlite down -n 1
```

The database URL may also be given through `DATABASE_URL`, as a path or as
`sqlite://path`. Other commands are `fresh` (drop every table and reapply),
`refresh` (roll back and reapply) and `reset` (roll back everything).

## Using it as a library

```python
from appledb.entitlements import flatten_entitlements

flatten_entitlements({"com.apple.private.security": {"enabled": True}})
# {ExecutableEntitlement(key='com.apple.private.security.enabled', value='true')}
```

Nested dictionary keys are joined with dots, each array element becomes its own
entry under the same key, and every leaf is turned into text (data as base64,
dates in ISO 8601 UTC form). `appledb.entitlements.parse_entitlements_file`
reads one Mach-O file, `appledb.database.DBController` gives direct access to
the database, and `appledb.client.ServerController` talks to a running server.

## What it does not do

- The admin routes have no authentication; anyone who can reach the server can
  write to it.
- The client reaches the server over `http://` only, not over a Unix socket.
- For a fat (universal) binary only the first architecture is read.
- Only main executables are collected; libraries and bundles are skipped.