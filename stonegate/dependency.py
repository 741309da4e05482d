"""Table dependency analysis for SQL schema files."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

_SQL_SUFFIXES = {".pssql", ".pgsql", ".sql"}

_SINGLE_LINE_COMMENT = re.compile(r"--[^\n]*")
_MULTI_LINE_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_CREATE_TABLE = re.compile(
    r"CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(\w+)\s*\((.*?)\)(?:\s*;|\s*\Z)",
    re.IGNORECASE | re.DOTALL,
)
_PRIMARY_KEY = re.compile(r"PRIMARY\s+KEY\s*\(\s*([^)]+)\s*\)", re.IGNORECASE)
_TABLE_FOREIGN_KEY = re.compile(
    r"FOREIGN\s+KEY\s*\(\s*(\w+)\s*\)\s*REFERENCES\s+(\w+)\s*\(\s*(\w+)\s*\)(.*)",
    re.IGNORECASE | re.DOTALL,
)
_COLUMN = re.compile(
    r"(\w+)\s+(\w+(?:\s*\([^)]+\))?(?:\s*\[\s*\])?)", re.IGNORECASE
)
_INLINE_REFERENCE = re.compile(
    r"REFERENCES\s+(\w+)\s*\(\s*(\w+)\s*\)(.*)", re.IGNORECASE | re.DOTALL
)
_ON_ACTION = {
    action: re.compile(
        rf"ON\s+{action}\s+(CASCADE|RESTRICT|SET\s+NULL|SET\s+DEFAULT|NO\s+ACTION)",
        re.IGNORECASE,
    )
    for action in ("DELETE", "UPDATE")
}

_HEAVY_RULE = "═══════════════════════════════════════════════════════════════\n"
_LIGHT_RULE = "───────────────────────────────────────────────────────────────\n"


@dataclass
class ForeignKeyDependency:
    """A foreign key from one table's column to another table's column."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    on_delete: str | None = None
    on_update: str | None = None


@dataclass
class ColumnReference:
    """An inline REFERENCES clause on a column."""

    table: str
    column: str
    on_delete: str | None = None
    on_update: str | None = None


@dataclass
class ColumnInfo:
    """A column definition parsed from CREATE TABLE."""

    name: str
    data_type: str
    is_nullable: bool
    is_primary_key: bool
    has_default: bool
    references: ColumnReference | None = None


@dataclass
class TableInfo:
    """A table with its columns, keys and the tables it depends on."""

    name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    primary_key: list[str] | None = None
    foreign_keys: list[ForeignKeyDependency] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)


@dataclass
class DependencyAnalysis:
    """The outcome of analysing a set of table definitions."""

    tables: list[TableInfo]
    creation_order: list[str]
    dependency_graph: dict[str, list[str]]
    reverse_dependencies: dict[str, list[str]]
    circular_dependencies: list[list[str]]


def analyze_directory(directory) -> DependencyAnalysis:
    """Analyse every .pssql, .pgsql and .sql file in a directory, in name order."""
    paths = sorted(
        (p for p in Path(directory).iterdir() if p.suffix in _SQL_SUFFIXES),
        key=lambda p: p.name,
    )
    sql = "".join(p.read_text() + "\n" for p in paths)
    return analyze_sql(sql)


def analyze_sql(sql: str) -> DependencyAnalysis:
    """Analyse SQL text for tables and their dependencies.

    Raises ValueError when the tables depend on each other in a cycle.
    """
    tables = _extract_tables(sql)
    graph = {table.name: list(table.depends_on) for table in tables}
    reverse = _build_reverse_dependencies(graph)
    cycles = _detect_circular_dependencies(graph)
    order = _topological_sort(graph)
    return DependencyAnalysis(
        tables=tables,
        creation_order=order,
        dependency_graph=graph,
        reverse_dependencies=reverse,
        circular_dependencies=cycles,
    )


def _normalize_sql(sql: str) -> str:
    sql = _SINGLE_LINE_COMMENT.sub("", sql)
    return _MULTI_LINE_COMMENT.sub("", sql)


def _extract_tables(sql: str) -> list[TableInfo]:
    tables = []
    for match in _CREATE_TABLE.finditer(_normalize_sql(sql)):
        name = match.group(1).lower()
        columns, foreign_keys, primary_key = _parse_table_body(match.group(2), name)
        depends_on = list(dict.fromkeys(fk.to_table for fk in foreign_keys))
        tables.append(
            TableInfo(
                name=name,
                columns=columns,
                primary_key=primary_key,
                foreign_keys=foreign_keys,
                depends_on=depends_on,
            )
        )
    return tables


def _parse_table_body(body: str, table_name: str):
    columns: list[ColumnInfo] = []
    foreign_keys: list[ForeignKeyDependency] = []
    primary_key: list[str] | None = None

    for part in _split_table_body(body):
        part = part.strip()
        if not part:
            continue
        upper = part.upper()

        if upper.startswith("PRIMARY KEY"):
            pk_columns = _extract_primary_key_columns(part)
            if pk_columns is not None:
                primary_key = pk_columns
            continue

        if "FOREIGN KEY" in upper:
            fk = _parse_table_level_foreign_key(part, table_name)
            if fk is not None:
                foreign_keys.append(fk)
            continue

        if upper.startswith(("CHECK", "CONSTRAINT", "UNIQUE")):
            continue

        column = _parse_column(part)
        if column is None:
            continue
        if column.is_primary_key and primary_key is None:
            primary_key = [column.name]
        if column.references is not None:
            ref = column.references
            foreign_keys.append(
                ForeignKeyDependency(
                    from_table=table_name,
                    from_column=column.name,
                    to_table=ref.table,
                    to_column=ref.column,
                    on_delete=ref.on_delete,
                    on_update=ref.on_update,
                )
            )
        columns.append(column)

    return columns, foreign_keys, primary_key


def _split_table_body(body: str) -> list[str]:
    """Split on top-level commas, leaving commas inside parentheses alone."""
    parts = []
    current: list[str] = []
    depth = 0
    for ch in body:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def _extract_primary_key_columns(part: str) -> list[str] | None:
    match = _PRIMARY_KEY.search(part)
    if match is None:
        return None
    return [name.strip().lower() for name in match.group(1).split(",")]


def _parse_table_level_foreign_key(part: str, table_name: str) -> ForeignKeyDependency | None:
    match = _TABLE_FOREIGN_KEY.search(part)
    if match is None:
        return None
    suffix = match.group(4)
    return ForeignKeyDependency(
        from_table=table_name,
        from_column=match.group(1).lower(),
        to_table=match.group(2).lower(),
        to_column=match.group(3).lower(),
        on_delete=_extract_on_action(suffix, "DELETE"),
        on_update=_extract_on_action(suffix, "UPDATE"),
    )


def _parse_column(part: str) -> ColumnInfo | None:
    match = _COLUMN.match(part)
    if match is None:
        return None
    upper = part.upper()
    return ColumnInfo(
        name=match.group(1).lower(),
        data_type=match.group(2).upper(),
        is_nullable="NOT NULL" not in upper,
        is_primary_key="PRIMARY KEY" in upper,
        has_default="DEFAULT" in upper or "SERIAL" in upper,
        references=_parse_inline_reference(part),
    )


def _parse_inline_reference(part: str) -> ColumnReference | None:
    match = _INLINE_REFERENCE.search(part)
    if match is None:
        return None
    suffix = match.group(3)
    return ColumnReference(
        table=match.group(1).lower(),
        column=match.group(2).lower(),
        on_delete=_extract_on_action(suffix, "DELETE"),
        on_update=_extract_on_action(suffix, "UPDATE"),
    )


def _extract_on_action(text: str, action: str) -> str | None:
    match = _ON_ACTION[action].search(text)
    return match.group(1).upper() if match else None


def _build_reverse_dependencies(graph: dict[str, list[str]]) -> dict[str, list[str]]:
    reverse: dict[str, list[str]] = {table: [] for table in graph}
    for table, deps in graph.items():
        for dep in deps:
            reverse.setdefault(dep, []).append(table)
    return reverse


def _detect_circular_dependencies(graph: dict[str, list[str]]) -> list[list[str]]:
    cycles: list[list[str]] = []
    visited: set[str] = set()
    stack: list[str] = []

    def visit(node: str) -> None:
        visited.add(node)
        stack.append(node)
        for neighbor in graph.get(node, ()):
            if neighbor not in visited:
                visit(neighbor)
            elif neighbor in stack:
                cycles.append(stack[stack.index(neighbor):])
        stack.pop()

    for table in graph:
        if table not in visited:
            visit(table)
    return cycles


def _topological_sort(graph: dict[str, list[str]]) -> list[str]:
    in_degree: dict[str, int] = {}
    all_nodes: set[str] = set()
    for node, deps in graph.items():
        all_nodes.add(node)
        in_degree.setdefault(node, 0)
        for dep in deps:
            all_nodes.add(dep)
            in_degree[node] += 1
    for node in all_nodes:
        in_degree.setdefault(node, 0)

    dependents_of: dict[str, list[str]] = defaultdict(list)
    for node, deps in graph.items():
        for dep in deps:
            dependents_of[dep].append(node)

    queue = sorted(node for node, degree in in_degree.items() if degree == 0)
    result = []
    while queue:
        node = queue.pop()
        result.append(node)
        for dependent in dependents_of.get(node, ()):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)
                queue.sort()

    if len(result) != len(all_nodes):
        raise ValueError("Circular dependency detected - cannot determine creation order")
    return result


def format_analysis(analysis: DependencyAnalysis) -> str:
    """Render an analysis as a human-readable report."""
    lines = [
        _HEAVY_RULE,
        "                    TABLE DEPENDENCY ANALYSIS\n",
        _HEAVY_RULE,
        "\n",
        f"Found {len(analysis.tables)} tables\n\n",
        "CREATION ORDER (tables must be created in this sequence):\n",
        _LIGHT_RULE,
    ]
    lines += [f"  {i}. {table}\n" for i, table in enumerate(analysis.creation_order, 1)]
    lines.append("\n")

    lines += ["DEPENDENCY GRAPH (table → depends on):\n", _LIGHT_RULE]
    for table, deps in sorted(analysis.dependency_graph.items()):
        target = ", ".join(deps) if deps else "(no dependencies)"
        lines.append(f"  {table} → {target}\n")
    lines.append("\n")

    lines += ["REVERSE DEPENDENCIES (table ← depended on by):\n", _LIGHT_RULE]
    for table, dependents in sorted(analysis.reverse_dependencies.items()):
        source = ", ".join(dependents) if dependents else "(nothing depends on this)"
        lines.append(f"  {table} ← {source}\n")
    lines.append("\n")

    lines += ["FOREIGN KEY DETAILS:\n", _LIGHT_RULE]
    for table in analysis.tables:
        if not table.foreign_keys:
            continue
        lines.append(f"  {table.name}:\n")
        for fk in table.foreign_keys:
            constraints = []
            if fk.on_delete is not None:
                constraints.append(f"ON DELETE {fk.on_delete}")
            if fk.on_update is not None:
                constraints.append(f"ON UPDATE {fk.on_update}")
            suffix = f" ({', '.join(constraints)})" if constraints else ""
            lines.append(
                f"    • {fk.from_table}.{fk.from_column} → "
                f"{fk.to_table}.{fk.to_column}{suffix}\n"
            )
    lines.append("\n")

    if analysis.circular_dependencies:
        lines += ["⚠️  CIRCULAR DEPENDENCIES DETECTED:\n", _LIGHT_RULE]
        for cycle in analysis.circular_dependencies:
            lines.append(f"  {' → '.join(cycle)} → {cycle[0]}\n")
        lines.append("\n")

    lines.append(_HEAVY_RULE)
    return "".join(lines)