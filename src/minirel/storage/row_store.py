# 文件路径: MiniRel/src/minirel/storage/row_store.py

"""
RowStore - 内存行存储

【功能说明】
- 每张表一个有序字典：主键元组 → 行数据(dict)
- 提供表级别操作接口：create_table, insert_row, seq_scan, find_keys, replace_row, delete_keys
- snapshot/restore 按表回滚（级联删除、批量插入、批量更新只复制涉及的表）

【设计原则】
- 行存储本身不做约束校验，校验由 ConstraintValidator 在写入前完成
- 对外返回的行都是副本，调用方修改不会影响存储
"""

from typing import Dict, List, Any, Iterable, Iterator, Callable, Optional, Tuple

from minirel.errors import TableNotFound, DuplicateTable

Key = Tuple[Any, ...]


class TableRows:
    """单表行集合"""

    def __init__(self, name: str, primary_key: Tuple[str, ...]):
        self.name = name
        self.primary_key = tuple(primary_key)
        self.rows: Dict[Key, Dict[str, Any]] = {}

    def key_of(self, row: Dict[str, Any]) -> Key:
        return tuple(row.get(col) for col in self.primary_key)

    def copy(self) -> 'TableRows':
        clone = TableRows(self.name, self.primary_key)
        clone.rows = {key: dict(row) for key, row in self.rows.items()}
        return clone


class RowStore:
    """内存行存储"""

    def __init__(self):
        self.tables: Dict[str, TableRows] = {}

    def _get(self, table_name: str) -> TableRows:
        table = self.tables.get(table_name)
        if table is None:
            raise TableNotFound(f"表不存在: {table_name}", table=table_name)
        return table

    def create_table(self, table_name: str, primary_key: Tuple[str, ...]) -> None:
        """
        创建表的行存储

        Raises:
            DuplicateTable: 表已存在
        """
        if table_name in self.tables:
            raise DuplicateTable(f"表已存在: {table_name}", table=table_name)
        self.tables[table_name] = TableRows(table_name, primary_key)

    def drop_table(self, table_name: str) -> int:
        """删除表的行存储，返回被删除的行数"""
        table = self._get(table_name)
        del self.tables[table_name]
        return len(table.rows)

    def key_of(self, table_name: str, row: Dict[str, Any]) -> Key:
        return self._get(table_name).key_of(row)

    def insert_row(self, table_name: str, row_data: Dict[str, Any]) -> Key:
        """
        插入记录

        Returns:
            行的主键元组

        Raises:
            KeyError: 主键已存在（校验器应已拦截）
        """
        table = self._get(table_name)
        key = table.key_of(row_data)
        if key in table.rows:
            raise KeyError(f"主键已存在: {table_name}{key}")
        table.rows[key] = dict(row_data)
        return key

    def get_row(self, table_name: str, key: Key) -> Optional[Dict[str, Any]]:
        row = self._get(table_name).rows.get(tuple(key))
        return dict(row) if row is not None else None

    def has_key(self, table_name: str, key: Key) -> bool:
        return tuple(key) in self._get(table_name).rows

    def seq_scan(self, table_name: str) -> Iterator[Dict[str, Any]]:
        """全表扫描，按插入顺序返回行副本"""
        for row in list(self._get(table_name).rows.values()):
            yield dict(row)

    def find_keys(self, table_name: str,
                  predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[Key]:
        """返回满足条件的行主键"""
        table = self._get(table_name)
        if predicate is None:
            return list(table.rows.keys())
        return [key for key, row in table.rows.items() if predicate(dict(row))]

    def replace_row(self, table_name: str, old_key: Key, row_data: Dict[str, Any]) -> Key:
        """
        用新行替换旧行（主键可能改变）

        Raises:
            KeyError: 旧行不存在或新主键与其他行冲突
        """
        table = self._get(table_name)
        old_key = tuple(old_key)
        if old_key not in table.rows:
            raise KeyError(f"记录不存在: {table_name}{old_key}")

        new_key = table.key_of(row_data)
        if new_key != old_key and new_key in table.rows:
            raise KeyError(f"主键已存在: {table_name}{new_key}")

        if new_key == old_key:
            table.rows[old_key] = dict(row_data)
        else:
            # 保持原有扫描顺序
            table.rows = {
                (new_key if key == old_key else key): (dict(row_data) if key == old_key else row)
                for key, row in table.rows.items()
            }
        return new_key

    def delete_keys(self, table_name: str, keys) -> int:
        """
        按主键删除记录

        Raises:
            KeyError: 某个主键不存在（不会删除任何记录）
        """
        table = self._get(table_name)
        keys = [tuple(key) for key in keys]
        missing = [key for key in keys if key not in table.rows]
        if missing:
            raise KeyError(f"记录不存在: {table_name}{missing[0]}")

        for key in keys:
            table.rows.pop(key, None)
        return len(set(keys))

    def row_count(self, table_name: str) -> int:
        table = self.tables.get(table_name)
        return len(table.rows) if table else 0

    def snapshot(self, table_names: Iterable[str]) -> Dict[str, Optional[TableRows]]:
        """
        复制指定表的当前状态

        只复制操作会修改的表；快照时不存在的表记为 None，恢复时移除
        """
        return {
            name: self.tables[name].copy() if name in self.tables else None
            for name in set(table_names)
        }

    def restore(self, snapshot: Dict[str, Optional[TableRows]]) -> None:
        """恢复快照中的表，其余表保持不变"""
        for name, table in snapshot.items():
            if table is None:
                self.tables.pop(name, None)
            else:
                self.tables[name] = table
