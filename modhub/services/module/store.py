"""
模块记录存储

对 module_settings 表的最小行级操作：find / list / upsert / delete / count。
不负责提交事务，由调用方（ModuleRegistry）决定 commit / rollback。
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from modhub.models.database import ModuleSetting


class ModuleStore:
    """基于 SQLAlchemy 会话的模块记录存储"""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _query(self):
        return self.db.query(ModuleSetting)

    def find(self, key: str, for_update: bool = False) -> Optional[ModuleSetting]:
        """
        按 key 查找记录

        Args:
            key: 模块 key
            for_update: 加行锁（SELECT ... FOR UPDATE）
        """
        query = self._query().filter(ModuleSetting.key == key)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_many(self, keys: Iterable[str], shared_lock: bool = False) -> Dict[str, ModuleSetting]:
        """批量查找，返回 key -> 记录"""
        keys = list(keys)
        if not keys:
            return {}
        query = self._query().filter(ModuleSetting.key.in_(keys))
        if shared_lock:
            query = query.with_for_update(read=True)
        return {record.key: record for record in query.all()}

    def list(self, *criteria: Any) -> List[ModuleSetting]:
        """按 sort_order、key 升序列出记录"""
        query = self._query()
        if criteria:
            query = query.filter(*criteria)
        return query.order_by(ModuleSetting.sort_order.asc(), ModuleSetting.key.asc()).all()

    def upsert(self, key: str, fields: Dict[str, Any]) -> Tuple[ModuleSetting, bool]:
        """
        按 key 创建或覆盖记录（key 本身不会被修改）

        Returns:
            (record, created)
        """
        record = self.find(key, for_update=True)
        created = record is None
        if created:
            record = ModuleSetting(key=key)
            self.db.add(record)

        for name, value in fields.items():
            if name in ("id", "key", "created_at", "updated_at"):
                continue
            setattr(record, name, value)

        self.db.flush()
        return record, created

    def delete(self, record: ModuleSetting) -> None:
        self.db.delete(record)
        self.db.flush()

    def count(self, *criteria: Any) -> int:
        query = self.db.query(func.count(ModuleSetting.id))
        if criteria:
            query = query.filter(*criteria)
        return int(query.scalar() or 0)

    def enabled_dependents(self, key: str) -> List[str]:
        """
        列出依赖 key 的已启用模块（不含自身）

        dependencies 是 JSON 列，各方言的包含查询写法不同，这里在 Python 侧过滤
        """
        enabled = self.list(ModuleSetting.enabled.is_(True), ModuleSetting.key != key)
        return [record.key for record in enabled if key in (record.dependencies or [])]
