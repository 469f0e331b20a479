"""CLI 模块管理命令测试"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker
from typer.testing import CliRunner

from modhub.cli import CliContext, app
from modhub.core.cache_service import CacheService
from modhub.core.modules import ModuleRegistry
from modhub.models.database import ModuleSetting
from modhub.services.module import ModuleStore

runner = CliRunner()


@pytest.fixture()
def cli_obj(registry: ModuleRegistry, session_factory: sessionmaker) -> CliContext:
    return CliContext(registry=registry, session_factory=session_factory)


def _seed(db: Session, key: str, **fields) -> None:
    fields.setdefault("name", key)
    db.add(ModuleSetting(key=key, **fields))
    db.commit()


def _find(db: Session, key: str):
    db.expire_all()
    return ModuleStore(db).find(key)


class TestListAndStatus:
    def test_list_empty(self, cli_obj: CliContext) -> None:
        result = runner.invoke(app, ["list"], obj=cli_obj)

        assert result.exit_code == 0
        assert "No modules found." in result.output

    def test_list_shows_statistics(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "auth", is_core=True, enabled=True)
        _seed(db, "coupon")

        result = runner.invoke(app, ["list"], obj=cli_obj)

        assert result.exit_code == 0
        assert "auth" in result.output
        assert "coupon" in result.output
        assert "Total: 2" in result.output
        assert "Enabled: 1" in result.output
        assert "Core: 1" in result.output

    def test_status_shows_unmet_dependencies(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon", dependencies=["base"])

        result = runner.invoke(app, ["status"], obj=cli_obj)

        assert result.exit_code == 0
        assert "Module: coupon" in result.output
        assert "Unmet Dependencies: base" in result.output


class TestEnableDisable:
    def test_enable_success(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon")

        result = runner.invoke(app, ["enable", "coupon"], obj=cli_obj)

        assert result.exit_code == 0
        assert "Module 'coupon' enabled successfully." in result.output
        assert _find(db, "coupon").enabled is True

    def test_enable_already_enabled(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon", enabled=True)

        result = runner.invoke(app, ["enable", "coupon"], obj=cli_obj)

        assert result.exit_code == 0
        assert "already enabled" in result.output

    def test_enable_missing_module(self, cli_obj: CliContext) -> None:
        result = runner.invoke(app, ["enable", "ghost"], obj=cli_obj)

        assert result.exit_code == 1
        assert "Error: Module 'ghost' not found" in result.output

    def test_enable_unmet_dependencies(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "c", dependencies=["a", "b"])

        result = runner.invoke(app, ["enable", "c"], obj=cli_obj)

        assert result.exit_code == 1
        assert "unmet dependencies: a, b" in result.output

    def test_disable_core_module(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "auth", is_core=True, enabled=True)

        result = runner.invoke(app, ["disable", "auth"], obj=cli_obj)

        assert result.exit_code == 1
        assert "Core module 'auth' cannot be enabled or disabled" in result.output

    def test_disable_blocked_by_dependents(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "b", enabled=True)
        _seed(db, "c", enabled=True, dependencies=["b"])

        result = runner.invoke(app, ["disable", "b"], obj=cli_obj)

        assert result.exit_code == 1
        assert "depend on it: c" in result.output

    def test_disable_twice(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon", enabled=True)

        first = runner.invoke(app, ["disable", "coupon"], obj=cli_obj)
        second = runner.invoke(app, ["disable", "coupon"], obj=cli_obj)

        assert first.exit_code == 0
        assert "disabled successfully" in first.output
        assert second.exit_code == 0
        assert "already disabled" in second.output


class TestInstallUninstall:
    def test_install_with_options(self, cli_obj: CliContext, db: Session) -> None:
        result = runner.invoke(
            app,
            [
                "install",
                "payment_gateway",
                "--description",
                "Payments",
                "--module-version",
                "2.1.0",
                "--settings",
                '{"currency": "EUR"}',
                "-d",
                "billing",
                "-d",
                "auth",
                "--sort-order",
                "4",
            ],
            obj=cli_obj,
        )

        assert result.exit_code == 0
        assert "installed successfully" in result.output
        record = _find(db, "payment_gateway")
        assert record.name == "Payment Gateway"
        assert record.description == "Payments"
        assert record.version == "2.1.0"
        assert record.settings == {"currency": "EUR"}
        assert record.dependencies == ["billing", "auth"]
        assert record.sort_order == 4
        assert record.enabled is False

    @pytest.mark.parametrize("settings", ["{broken", "[1, 2]"])
    def test_install_invalid_settings(
        self, cli_obj: CliContext, db: Session, settings: str
    ) -> None:
        result = runner.invoke(app, ["install", "coupon", "--settings", settings], obj=cli_obj)

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert _find(db, "coupon") is None

    def test_install_duplicate(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon")

        result = runner.invoke(app, ["install", "coupon"], obj=cli_obj)

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_uninstall_with_confirmation(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon")

        result = runner.invoke(app, ["uninstall", "coupon"], input="y\n", obj=cli_obj)

        assert result.exit_code == 0
        assert "uninstalled successfully" in result.output
        assert _find(db, "coupon") is None

    def test_uninstall_cancelled(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "coupon")

        result = runner.invoke(app, ["uninstall", "coupon"], input="n\n", obj=cli_obj)

        assert result.exit_code == 0
        assert "Uninstall cancelled." in result.output
        assert _find(db, "coupon") is not None

    def test_uninstall_core_module(self, cli_obj: CliContext, db: Session) -> None:
        _seed(db, "auth", is_core=True, enabled=True)

        result = runner.invoke(app, ["uninstall", "auth", "--yes"], obj=cli_obj)

        assert result.exit_code == 1
        assert "cannot be uninstalled" in result.output


class TestSyncAndCache:
    def test_sync(
        self, cli_obj: CliContext, db: Session, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from modhub.core.modules import declarations

        monkeypatch.setattr(declarations.config, "modules_config_file", "")
        monkeypatch.delenv("MODULE_HEARTBEAT_ENABLED", raising=False)

        result = runner.invoke(app, ["sync"], obj=cli_obj)

        assert result.exit_code == 0
        assert "Modules synced from config successfully" in result.output
        assert "created: 1" in result.output
        assert _find(db, "heartbeat").enabled is True

    def test_clear_cache_reports_memory_backend(self, cli_obj: CliContext) -> None:
        result = runner.invoke(app, ["clear-cache"], obj=cli_obj)

        assert result.exit_code == 0
        assert "Module caches cleared successfully (backend: memory)." in result.output
        assert "local to this process" in result.output

    def test_clear_cache_disabled_backend_has_no_warning(
        self, session_factory: sessionmaker
    ) -> None:
        registry = ModuleRegistry(cache=CacheService(enabled=False), auto_sync=False)
        cli_obj = CliContext(registry=registry, session_factory=session_factory)

        result = runner.invoke(app, ["clear-cache"], obj=cli_obj)

        assert result.exit_code == 0
        assert "backend: disabled" in result.output
        assert "Warning" not in result.output


class TestDefaultContext:
    """未传入 obj 时按全局配置构建上下文"""

    @pytest.fixture()
    def use_database(self, monkeypatch: pytest.MonkeyPatch):
        import modhub.database.database as database_module
        from modhub.config import config

        def _use(url: str) -> None:
            monkeypatch.setattr(config, "database_url", url)
            monkeypatch.setattr(config, "module_cache_backend", "memory")
            monkeypatch.setattr(database_module, "_engine", None)
            monkeypatch.setattr(
                database_module,
                "SessionLocal",
                sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False),
            )

        return _use

    def test_sync_is_skipped_when_tables_missing(self, tmp_path, use_database) -> None:
        use_database(f"sqlite:///{tmp_path / 'fresh.db'}")

        result = runner.invoke(app, ["sync"])

        assert result.exit_code == 0
        assert "sync skipped" in result.output

    def test_unreachable_database_is_one_line_error(self, tmp_path, use_database) -> None:
        use_database(f"sqlite:///{tmp_path / 'missing-dir' / 'modhub.db'}")

        result = runner.invoke(app, ["list"])

        assert result.exit_code == 1
        assert "Error: Storage failure" in result.output
        assert "Traceback" not in result.output
