# stonegate

Building blocks for a multi-tenant PostgreSQL gateway. The package does these jobs:

- keeps a registry of platforms and their schemas on disk;
- unpacks schema archives;
- works out the order in which tables must be created;
- installs extensions and custom types;
- records schema changes and admin actions in tables.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

To get the test tools as well, add the `test` extra:

```
pip install ".[test]"
```

## Platform registry (`stonegate.platform`)

Each platform has its own directory under the data directory. The platform's
metadata is kept there in `platform.json`.

```python
from stonegate.platform import PlatformRegistry

registry = PlatformRegistry("/var/lib/gateway")
registry.register_platform("myapp")
registry.add_schema("myapp", "tenant_db")
registry.record_database("myapp", "tenant_db", "myapp_tenant_1")
print(registry.list_platforms())                    # sorted names
print(registry.list_databases("myapp", "tenant_db"))  # DatabaseRecord list, sorted by name
```

- A platform name may contain only letters, digits and underscores. See `is_valid_identifier`.
- Registering an invalid name raises `InvalidRequestError`, and so does registering a name that is already taken.
- Asking for a platform that is not registered also raises `InvalidRequestError`.
- A `platform.json` that cannot be read or parsed raises `InternalError`.
- `PlatformInfo` and `DatabaseRecord` convert to and from plain dicts with `to_dict()` / `from_dict()`.
- `PlatformInfo.with_credentials(name, db_user, db_password)` builds metadata that carries database credentials.

## Schema store (`stonegate.schema_store`)

A schema arrives as a `.tar.gz` archive. It holds `tables/` and `functions/`.
It may also hold `extensions/`, `types/`, `seeders/` and `migrations/`. When an
entry's path starts with `postgresql/`, that leading directory is dropped.

```python
from stonegate.schema_store import SchemaStore

store = SchemaStore("/var/lib/gateway")
with open("schema.tar.gz", "rb") as fh:
    schema = store.store_schema("myapp", "tenant_db", fh.read())
print(schema.checksum, schema.has_tables, schema.has_migrations)
print(store.list_schemas("myapp"))
```

- **Replacing a schema:** storing a schema replaces any schema of the same name.
- **Checksum:** `checksum` is the SHA-256 of the archive bytes, computed by `compute_checksum`.
- **`get_schema`:** describes a schema that is already stored. Its checksum is reported as `"stored"`.
- **`list_schemas`:** lists only directories that contain `tables/` or `functions/`.
- **Entries that are refused:** an entry that would land outside the schema directory raises `SchemaExtractionError`.
- **Damaged archives:** raise `SchemaExtractionError`.
- **Component paths:** `extensions_dir`, `types_dir`, `tables_dir`, `functions_dir`, `seeders_dir` and `migrations_dir` give the path of each component.

## Temporary extraction (`stonegate.extractor`)

```python
from stonegate.extractor import SchemaExtractor

with SchemaExtractor.from_bytes(archive_bytes) as extractor:
    for path in extractor.list_pssql_files(extractor.migrations_dir()):
        print(path.name, len(extractor.read_file(path)))
```

`from_bytes` unpacks the archive into a temporary directory. The directory is
removed by `cleanup()`, or when the `with` block ends.

The component directories are found as `postgresql/<name>`, either at the top
level of the archive or one directory down.

## Table dependency analysis (`stonegate.dependency`)

```python
from stonegate.dependency import analyze_directory, format_analysis

analysis = analyze_directory("schema/tables")
print(analysis.creation_order)
print(format_analysis(analysis))
```

- **Input:** `analyze_directory` reads the `.pssql`, `.pgsql` and `.sql` files in name order. `analyze_sql` takes SQL text directly.
- **What the analysis holds:**
  - the parsed tables, with their columns, primary keys and foreign keys;
  - the creation order;
  - the dependency graph and its reverse;
  - any cycles.
- **Cycles:** if the tables form a cycle, no creation order can be found and a `ValueError` is raised.

## Working with a database

The database-facing helpers are coroutines. They take a connection pool whose
`acquire()` returns an async context manager. That context manager yields a
connection with these coroutines:

- `execute(sql, *args)`
- `fetch(sql, *args)`
- `fetchrow(sql, *args)`

Queries use `$1`, `$2`, … placeholders.

- `stonegate.extensions.ExtensionManager`
  - `install_extensions` creates each extension listed in an `extensions/` folder that is not yet installed.
  - `list_extensions` lists the installed extensions.
  - Failures raise `ExtensionNotAvailableError` or `ExtensionInstallError`.
- `stonegate.custom_types.CustomTypeManager`
  - `deploy_types` creates the enum, composite and domain types from a `types/` folder.
  - It records the deployed types in a tracking table and returns the number created plus updated.
  - `list_types` lists the custom types in the `public` schema.
- `stonegate.changelog.ChangelogManager`
  - `ensure_changelog_table` creates the changelog table.
  - `log_*` methods record migrations, functions, extensions and seeders.
  - `get_recent_entries` and `get_entries_by_type` read entries back.
- `stonegate.audit`
  - `ensure_audit_table(pool)` creates the admin audit table.
  - `log_admin_action(...)` records an action. Its failures are logged, never raised.

The file-parsing helpers work without a database:

```python
from stonegate.extensions import ExtensionManager
from stonegate.custom_types import CustomTypeManager

ext = ExtensionManager().parse_extension("extensions/uuid-ossp.sql")
print(ExtensionManager().build_create_extension_sql(ext))

custom = CustomTypeManager().parse_type("types/order_status.pssql")
print(custom.name, custom.type_kind, custom.checksum)
```

An extension file is named after its extension. Inside it, optional `-- version:`
and `-- schema:` comment lines set the extension's version and schema.

## Errors

Every error is a subclass of `stonegate.errors.GatewayError`:

- `InvalidRequestError`
- `InternalError`
- `SchemaExtractionError`
- `ConnectionFailedError`
- `MigrationFailedError`
- `QueryFailedError`
- `ExtensionNotAvailableError`
- `ExtensionInstallError`

## What this package does not do

- **No gateway:** it does not serve requests or route queries to tenant databases.
- **No connections of its own:** it opens no database connections and brings no driver or pool. You supply the pool.
- **No migrations or functions:** it does not run migration files, deploy functions or run seeders. The changelog only records such work when you report it.
- **No command-line tool:** it installs no commands.

## Running the tests

```
pytest
```