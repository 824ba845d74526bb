from sltmon import migrate_sqlite_to_postgres as migrate


class TestMigrateArguments:
    def test_missing_dsn(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("SLTMON_DATABASE_URL", raising=False)

        assert migrate.main(["--sqlite-path", str(tmp_path / "sltmon.db")]) == 2
        assert "SLTMON_DATABASE_URL is not set" in capsys.readouterr().err

    def test_missing_sqlite_file(self, tmp_path, capsys):
        code = migrate.main(["--sqlite-path", str(tmp_path / "missing.db"), "--postgres-dsn", "postgresql://u@h/db"])

        assert code == 2
        assert "SQLite db not found" in capsys.readouterr().err

    def test_usage_log_is_copied_with_its_ids(self):
        specs = {table: (cols, id_col) for table, cols, id_col in migrate.TABLE_SPECS}

        assert specs["usage_log"] == (["id", "timestamp", "package_name", "used_gb", "vas_used_gb", "raw_json"], "id")
        assert specs["settings"][1] is None
