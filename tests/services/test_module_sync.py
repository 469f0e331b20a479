"""
声明式同步测试

- 覆盖式 upsert，不删除未声明的记录
- 存储不可用时整体跳过
- 单条无效声明不影响其余记录
- 声明文件解析与环境变量覆盖
"""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from modhub.core.modules import ModuleDescriptor, ModuleRegistry
from modhub.core.modules import declarations
from modhub.core.modules.declarations import (
    apply_env_overrides,
    load_declarations_file,
    load_declared_modules,
    parse_declarations,
)
from modhub.models.database import ModuleSetting
from modhub.services.module import ModuleStore


def _find(db: Session, key: str):
    db.expire_all()
    return ModuleStore(db).find(key)


class TestSync:
    """同步语义"""

    def test_sync_creates_then_overwrites(self, db: Session, registry: ModuleRegistry) -> None:
        db.add(ModuleSetting(key="legacy", name="Legacy", enabled=True))
        db.commit()

        first = registry.sync(db, [{"key": "M", "enabled": True, "is_core": False}])
        assert first.created == ["M"]
        assert first.updated == []
        assert _find(db, "M").enabled is True

        second = registry.sync(db, [{"key": "M", "enabled": False, "is_core": False}])
        assert second.created == []
        assert second.updated == ["M"]
        assert _find(db, "M").enabled is False

        # 未声明的记录保持不变
        legacy = _find(db, "legacy")
        assert legacy is not None
        assert legacy.enabled is True

    def test_sync_overwrites_every_mutable_field(
        self, db: Session, registry: ModuleRegistry
    ) -> None:
        registry.sync(
            db,
            [
                {
                    "key": "coupon",
                    "name": "Coupon",
                    "settings": {"a": 1, "b": 2},
                    "dependencies": ["base"],
                    "sort_order": 3,
                    "version": "1.0.0",
                }
            ],
        )
        registry.update_settings(db, "coupon", {"c": 3})

        registry.sync(
            db,
            [
                ModuleDescriptor(
                    key="coupon",
                    name="Coupons v2",
                    settings={"a": 9},
                    dependencies=[],
                    sort_order=1,
                    version="2.0.0",
                    author="team",
                )
            ],
        )

        record = _find(db, "coupon")
        assert record.name == "Coupons v2"
        assert record.settings == {"a": 9}
        assert record.dependencies == []
        assert record.sort_order == 1
        assert record.version == "2.0.0"
        assert record.author == "team"

    def test_sync_keeps_changelog_unless_declared(
        self, db: Session, registry: ModuleRegistry
    ) -> None:
        registry.sync(db, [{"key": "coupon", "changelog": "initial"}])
        registry.sync(db, [{"key": "coupon", "version": "1.1.0"}])
        assert _find(db, "coupon").changelog == "initial"

        registry.sync(db, [{"key": "coupon", "changelog": "rewritten"}])
        assert _find(db, "coupon").changelog == "rewritten"

    def test_sync_can_flip_core_flag(self, db: Session, registry: ModuleRegistry) -> None:
        registry.sync(db, [{"key": "auth", "is_core": True, "enabled": True}])
        registry.sync(db, [{"key": "auth", "is_core": True, "enabled": False}])

        record = _find(db, "auth")
        assert record.is_core is True
        assert record.enabled is False

    def test_invalid_descriptor_does_not_abort_others(
        self, db: Session, registry: ModuleRegistry
    ) -> None:
        result = registry.sync(
            db,
            [
                {"key": "first"},
                {"key": "bad key"},
                {"name": "missing key"},
                {"key": "last"},
            ],
        )

        assert result.created == ["first", "last"]
        assert result.failed == ["bad key", "?"]
        assert result.total == 2
        assert _find(db, "first") is not None
        assert _find(db, "last") is not None

    def test_store_failure_on_one_record_continues(
        self, db: Session, registry: ModuleRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        original_upsert = ModuleStore.upsert

        def flaky_upsert(self, key, fields):
            if key == "broken":
                raise OperationalError("UPDATE module_settings", {}, Exception("locked"))
            return original_upsert(self, key, fields)

        monkeypatch.setattr(ModuleStore, "upsert", flaky_upsert)

        result = registry.sync(db, [{"key": "broken"}, {"key": "fine"}])

        assert result.failed == ["broken"]
        assert result.created == ["fine"]
        assert _find(db, "fine") is not None

    def test_sync_skips_when_table_missing(
        self, db: Session, registry: ModuleRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import modhub.core.modules.registry as registry_module

        monkeypatch.setattr(registry_module, "is_table_present", lambda db, name: False)

        result = registry.sync(db, [{"key": "coupon"}])

        assert result.skipped is True
        assert result.total == 0
        monkeypatch.undo()
        assert _find(db, "coupon") is None

    def test_sync_invalidates_whole_cache(
        self, db: Session, registry: ModuleRegistry
    ) -> None:
        registry.sync(db, [{"key": "coupon", "enabled": False}])
        assert registry.get_enabled_modules(db) == {}
        assert registry.get_module_config(db, "coupon").enabled is False

        registry.sync(db, [{"key": "coupon", "enabled": True}])
        assert list(registry.get_enabled_modules(db)) == ["coupon"]
        assert registry.get_module_config(db, "coupon").enabled is True


class TestInitialize:
    """进程启动时的一次性同步"""

    def test_initialize_runs_once(self, db: Session, registry: ModuleRegistry) -> None:
        registry.initialize(db, [{"key": "coupon"}])
        registry.initialize(db, [{"key": "other"}])

        assert registry.initialized is True
        assert _find(db, "coupon") is not None
        assert _find(db, "other") is None

    def test_initialize_without_auto_sync(self, db: Session) -> None:
        registry = ModuleRegistry(auto_sync=False)
        registry.initialize(db, [{"key": "coupon"}])

        assert registry.initialized is True
        assert _find(db, "coupon") is None

    def test_initialize_loads_builtin_declarations(
        self, db: Session, registry: ModuleRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(declarations.config, "modules_config_file", "")

        registry.initialize(db)

        heartbeat = _find(db, "heartbeat")
        assert heartbeat is not None
        assert heartbeat.enabled is True
        assert heartbeat.name == "Heartbeat"


class TestDeclarations:
    """声明解析"""

    def test_parse_list_format(self) -> None:
        descriptors = parse_declarations([{"key": "a"}, {"key": "b", "enabled": True}])
        assert [d.key for d in descriptors] == ["a", "b"]
        assert descriptors[1].enabled is True

    def test_parse_mapping_format(self) -> None:
        descriptors = parse_declarations({"a": {"sort_order": 2}, "b": None})
        assert [d.key for d in descriptors] == ["a", "b"]
        assert descriptors[0].sort_order == 2

    def test_parse_skips_invalid_entries(self) -> None:
        descriptors = parse_declarations([{"key": "ok"}, {"key": "x", "bogus": 1}, "text"])
        assert [d.key for d in descriptors] == ["ok"]

    def test_parse_mapping_skips_non_object_values(self) -> None:
        descriptors = parse_declarations(
            {"coupon": True, "flag": "yes", "count": 3, "ok": {"enabled": True}, "empty": None}
        )
        assert [d.key for d in descriptors] == ["ok", "empty"]
        assert descriptors[0].enabled is True

    def test_parse_rejects_scalar(self) -> None:
        assert parse_declarations("modules") == []

    def test_load_file(self, tmp_path: Path) -> None:
        path = tmp_path / "modules.json"
        path.write_text(json.dumps({"coupon": {"enabled": True}}), encoding="utf-8")

        descriptors = load_declarations_file(str(path))
        assert descriptors[0].key == "coupon"
        assert descriptors[0].enabled is True

    def test_load_missing_or_broken_file(self, tmp_path: Path) -> None:
        assert load_declarations_file(str(tmp_path / "missing.json")) == []

        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        assert load_declarations_file(str(broken)) == []

    def test_load_file_with_non_object_values(self, tmp_path: Path) -> None:
        path = tmp_path / "modules.json"
        path.write_text(json.dumps({"coupon": "yes", "billing": {}}), encoding="utf-8")

        descriptors = load_declarations_file(str(path))
        assert [d.key for d in descriptors] == ["billing"]

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MODULE_PAYMENT_GATEWAY_ENABLED", "false")
        descriptor = ModuleDescriptor(key="payment-gateway", enabled=True)

        assert apply_env_overrides(descriptor).enabled is False
        assert descriptor.enabled is True

    def test_file_overrides_builtin(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("MODULE_HEARTBEAT_ENABLED", raising=False)
        path = tmp_path / "modules.json"
        path.write_text(
            json.dumps([{"key": "heartbeat", "enabled": False}, {"key": "coupon"}]),
            encoding="utf-8",
        )

        descriptors = load_declared_modules(str(path))

        by_key = {d.key: d for d in descriptors}
        assert list(by_key) == ["heartbeat", "coupon"]
        assert by_key["heartbeat"].enabled is False


def test_sync_result_with_mock_session_when_store_unreachable() -> None:
    db = MagicMock()
    db.get_bind.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
    registry = ModuleRegistry(auto_sync=True)

    result = registry.sync(db, [{"key": "coupon"}])

    assert result.skipped is True
    db.commit.assert_not_called()
