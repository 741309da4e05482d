import pytest

from stonegate.dependency import (
    DependencyAnalysis,
    TableInfo,
    analyze_directory,
    analyze_sql,
    format_analysis,
)


def test_parse_simple_table():
    sql = """
        CREATE TABLE users (
            user_id SERIAL PRIMARY KEY,
            email VARCHAR(255) NOT NULL UNIQUE
        );
    """
    analysis = analyze_sql(sql)
    assert len(analysis.tables) == 1
    assert analysis.tables[0].name == "users"
    assert len(analysis.tables[0].columns) == 2


def test_simple_table_column_details():
    sql = """
        CREATE TABLE users (
            user_id SERIAL PRIMARY KEY,
            email VARCHAR(255) NOT NULL UNIQUE
        );
    """
    table = analyze_sql(sql).tables[0]
    user_id, email = table.columns
    assert table.primary_key == ["user_id"]
    assert user_id.data_type == "SERIAL"
    assert user_id.has_default is True
    assert user_id.is_primary_key is True
    assert email.data_type == "VARCHAR(255)"
    assert email.is_nullable is False
    assert email.has_default is False


def test_parse_foreign_key():
    sql = """
        CREATE TABLE users (
            user_id SERIAL PRIMARY KEY
        );

        CREATE TABLE todos (
            todo_id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(user_id) ON DELETE CASCADE
        );
    """
    analysis = analyze_sql(sql)
    assert len(analysis.tables) == 2
    todos = next(t for t in analysis.tables if t.name == "todos")
    assert len(todos.foreign_keys) == 1
    assert todos.foreign_keys[0].to_table == "users"
    assert todos.foreign_keys[0].on_delete == "CASCADE"
    assert todos.foreign_keys[0].on_update is None


def test_creation_order():
    sql = """
        CREATE TABLE users (user_id SERIAL PRIMARY KEY);
        CREATE TABLE todos (
            todo_id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(user_id)
        );
        CREATE TABLE todo_tags (
            todo_id INTEGER REFERENCES todos(todo_id),
            tag_id INTEGER REFERENCES tags(tag_id)
        );
        CREATE TABLE tags (tag_id SERIAL PRIMARY KEY);
    """
    order = analyze_sql(sql).creation_order
    assert order.index("users") < order.index("todos")
    assert order.index("tags") < order.index("todo_tags")
    assert order.index("todos") < order.index("todo_tags")
    assert sorted(order) == ["tags", "todo_tags", "todos", "users"]


def test_table_level_constraints_and_comments():
    sql = """
        -- membership table
        CREATE TABLE IF NOT EXISTS Members (
            group_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL, /* inline comment */
            PRIMARY KEY (group_id, user_id),
            CONSTRAINT fk_user FOREIGN KEY (user_id) REFERENCES users(user_id)
                ON DELETE SET NULL ON UPDATE NO ACTION,
            UNIQUE (user_id),
            CHECK (group_id > 0)
        );
    """
    table = analyze_sql(sql).tables[0]
    assert table.name == "members"
    assert table.primary_key == ["group_id", "user_id"]
    assert [c.name for c in table.columns] == ["group_id", "user_id"]
    fk = table.foreign_keys[0]
    assert (fk.from_table, fk.from_column, fk.to_table, fk.to_column) == (
        "members",
        "user_id",
        "users",
        "user_id",
    )
    assert fk.on_delete == "SET NULL"
    assert fk.on_update == "NO ACTION"
    assert table.depends_on == ["users"]


def test_reverse_dependencies_cover_every_table():
    sql = """
        CREATE TABLE users (user_id SERIAL PRIMARY KEY);
        CREATE TABLE posts (post_id SERIAL, user_id INTEGER REFERENCES users(user_id));
    """
    analysis = analyze_sql(sql)
    assert analysis.reverse_dependencies == {"users": ["posts"], "posts": []}
    assert analysis.dependency_graph == {"users": [], "posts": ["users"]}


def test_circular_dependency_raises():
    sql = """
        CREATE TABLE a (id INTEGER, b_id INTEGER REFERENCES b(id));
        CREATE TABLE b (id INTEGER, a_id INTEGER REFERENCES a(id));
    """
    with pytest.raises(ValueError, match="Circular dependency"):
        analyze_sql(sql)


def test_analyze_directory_reads_sql_files(tmp_path):
    (tmp_path / "002_todos.pssql").write_text(
        "CREATE TABLE todos (todo_id SERIAL, user_id INTEGER REFERENCES users(user_id));"
    )
    (tmp_path / "001_users.pgsql").write_text("CREATE TABLE users (user_id SERIAL);")
    (tmp_path / "notes.md").write_text("CREATE TABLE ignored (id INTEGER);")
    analysis = analyze_directory(tmp_path)
    assert [t.name for t in analysis.tables] == ["users", "todos"]
    assert analysis.creation_order == ["users", "todos"]


def test_analyze_directory_missing_raises(tmp_path):
    with pytest.raises(OSError):
        analyze_directory(tmp_path / "missing")


def test_format_analysis_report():
    sql = """
        CREATE TABLE users (user_id SERIAL PRIMARY KEY);
        CREATE TABLE todos (
            todo_id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(user_id) ON DELETE CASCADE
        );
    """
    report = format_analysis(analyze_sql(sql))
    assert "Found 2 tables\n" in report
    assert "  1. users\n  2. todos\n" in report
    assert "  todos → users\n" in report
    assert "  users → (no dependencies)\n" in report
    assert "  users ← todos\n" in report
    assert "  todos ← (nothing depends on this)\n" in report
    assert "    • todos.user_id → users.user_id (ON DELETE CASCADE)\n" in report
    assert "CIRCULAR" not in report


def test_format_analysis_lists_cycles():
    analysis = DependencyAnalysis(
        tables=[TableInfo(name="a"), TableInfo(name="b")],
        creation_order=[],
        dependency_graph={"a": ["b"], "b": ["a"]},
        reverse_dependencies={"a": ["b"], "b": ["a"]},
        circular_dependencies=[["a", "b"]],
    )
    report = format_analysis(analysis)
    assert "⚠️  CIRCULAR DEPENDENCIES DETECTED:\n" in report
    assert "  a → b → a\n" in report