"""Platform and schema registry, archive extraction, table dependency analysis, and
extension, custom-type, changelog and audit helpers for a multi-tenant PostgreSQL gateway."""

__version__ = "1.2.0"