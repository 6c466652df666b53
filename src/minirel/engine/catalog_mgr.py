# 文件路径: MiniRel/src/minirel/engine/catalog_mgr.py

"""
CatalogManager - 系统目录管理器

【功能说明】
- 管理表定义：列、主键、唯一约束、外键约束
- 定义表时校验约束的合法性（InvalidConstraint）
- 提供外键图查询：依赖表、环检测、依赖顺序
- 根据约束位置推导关系类型（一对一/一对多/多对多）

【外键图】
边的方向：子表(持有外键) → 父表(被引用)
- 自引用（同一张表）允许存在
- 不同表之间的环在 add_foreign_key 时拒绝

【设计原则】
- 目录只管理元数据，行数据由 RowStore 管理
- 目录对象由 Database 创建并显式传递给各组件，没有全局状态
"""

import copy
import time
from collections import deque
from typing import Dict, List, Optional, Any, Iterable, Tuple
from dataclasses import dataclass

from minirel.errors import (
    DuplicateTable, TableNotFound, InvalidConstraint, CyclicForeignKey, DependentTablesExist
)
from .constraints import (
    TableDefinition, ForeignKeyConstraint, Relationship,
    RelationshipKind, OnDelete
)


@dataclass
class TableMetadata:
    """表元数据"""
    table_id: int
    table_name: str
    created_time: int


class CatalogManager:
    """系统目录管理器"""

    def __init__(self):
        # 按定义顺序保存
        self.tables: Dict[str, TableDefinition] = {}
        self.table_meta: Dict[str, TableMetadata] = {}

        # ID分配器
        self.next_table_id = 1

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------
    def define_table(self, definition: TableDefinition) -> int:
        """
        注册新表到系统目录

        Args:
            definition: 表定义

        Returns:
            分配的table_id

        Raises:
            DuplicateTable: 表已存在
            InvalidConstraint: 列或约束定义无效
        """
        name = definition.name
        if name in self.tables:
            raise DuplicateTable(f"表已存在: {name}", table=name)

        # 目录保存自己的副本，调用方之后修改原对象不影响已注册的表
        definition = copy.deepcopy(definition)
        self._validate_columns(definition)
        self._validate_keys(definition)

        seen_names = {definition.pk_name}
        for uc in definition.unique_constraints:
            if not uc.name:
                uc.name = f"uq_{name}_{'_'.join(uc.columns)}"
            self._claim_name(definition, uc.name, seen_names)

        for fk in definition.foreign_keys:
            self._validate_foreign_key(definition, fk)
            self._claim_name(definition, fk.name, seen_names)

        table_id = self.next_table_id
        self.next_table_id += 1

        self.tables[name] = definition
        self.table_meta[name] = TableMetadata(table_id, name, int(time.time()))

        print(f"注册表到系统目录: {name} (table_id={table_id})")
        return table_id

    def add_foreign_key(self, table_name: str, fk: ForeignKeyConstraint) -> str:
        """
        为已有表添加外键 (ALTER TABLE ... ADD CONSTRAINT)

        Returns:
            外键约束名

        Raises:
            CyclicForeignKey: 新外键会在不同表之间形成环
        """
        definition = self.get_table(table_name)
        fk = copy.copy(fk)
        self._validate_foreign_key(definition, fk)

        names = {definition.pk_name}
        names.update(uc.name for uc in definition.unique_constraints)
        names.update(existing.name for existing in definition.foreign_keys)
        self._claim_name(definition, fk.name, names)

        if fk.ref_table != table_name:
            cycle = self.find_cycle(fk.ref_table, table_name)
            if cycle:
                raise CyclicForeignKey(
                    f"外键 {fk.name} 会形成环: {' -> '.join([table_name] + cycle)}",
                    table=table_name, constraint_name=fk.name, cycle=[table_name] + cycle
                )

        definition.foreign_keys.append(fk)
        print(f"添加外键约束: {fk.name}")
        return fk.name

    def drop_foreign_key(self, table_name: str, fk_name: str) -> bool:
        """删除外键约束"""
        definition = self.tables.get(table_name)
        if not definition:
            return False

        fk = definition.get_foreign_key(fk_name)
        if fk is None:
            return False

        definition.foreign_keys.remove(fk)
        print(f"删除外键约束: {table_name}.{fk_name}")
        return True

    def check_drop(self, table_name: str, cascade: bool) -> List[str]:
        """
        检查表能否被删除

        Returns:
            引用此表的其他表名列表

        Raises:
            TableNotFound: 表不存在
            DependentTablesExist: 非级联删除且存在依赖表
        """
        self.get_table(table_name)
        dependents = self.dependent_tables(table_name)
        if dependents and not cascade:
            raise DependentTablesExist(
                f"无法删除表 {table_name}: 被 {', '.join(dependents)} 引用 (使用 cascade)",
                table=table_name, dependents=dependents
            )
        return dependents

    def unregister_table(self, table_name: str) -> bool:
        """从系统目录移除表"""
        if table_name not in self.tables:
            return False

        del self.tables[table_name]
        del self.table_meta[table_name]

        print(f"从系统目录移除表: {table_name}")
        return True

    def snapshot(self, table_names: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        记录目录状态（级联操作失败时回滚）

        表的顺序和元数据只做浅复制；只深复制 table_names 中会被修改的表定义，
        为 None 时复制全部
        """
        names = self.tables.keys() if table_names is None else set(table_names)
        return {
            "order": list(self.tables.items()),
            "copies": {name: copy.deepcopy(self.tables[name]) for name in names if name in self.tables},
            "table_meta": dict(self.table_meta),
            "next_table_id": self.next_table_id
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        copies = snapshot["copies"]
        self.tables = {name: copies.get(name, definition) for name, definition in snapshot["order"]}
        self.table_meta = dict(snapshot["table_meta"])
        self.next_table_id = snapshot["next_table_id"]

    # ------------------------------------------------------------------
    # 校验
    # ------------------------------------------------------------------
    def _validate_columns(self, definition: TableDefinition):
        name = definition.name
        if not definition.columns:
            raise InvalidConstraint(f"表 {name} 缺少列定义", table=name)

        seen = set()
        for col in definition.columns:
            if col.name in seen:
                raise InvalidConstraint(f"重复的列名: {name}.{col.name}", table=name)
            seen.add(col.name)

    def _validate_keys(self, definition: TableDefinition):
        name = definition.name
        if not definition.primary_key:
            raise InvalidConstraint(f"表 {name} 缺少主键", table=name,
                                    constraint_name=definition.pk_name)

        self._require_columns(definition, definition.primary_key, definition.pk_name)

        for uc in definition.unique_constraints:
            if not uc.columns:
                raise InvalidConstraint(f"唯一约束缺少列: {name}", table=name, constraint_name=uc.name)
            self._require_columns(definition, uc.columns, uc.name)

    def _validate_foreign_key(self, definition: TableDefinition, fk: ForeignKeyConstraint):
        """
        校验外键定义

        - 子表列存在，列数与父表列数一致
        - 父表存在（自引用除外），父表列存在
        - 父表列集合必须是主键或唯一约束
        - SET NULL 只允许用于可空列
        """
        name = definition.name
        if not fk.name:
            fk.name = f"fk_{name}_{'_'.join(fk.columns)}_{fk.ref_table}_{'_'.join(fk.ref_columns)}"

        if not fk.columns:
            raise InvalidConstraint(f"外键缺少列: {fk.name}", table=name, constraint_name=fk.name)

        self._require_columns(definition, fk.columns, fk.name)

        if len(fk.columns) != len(fk.ref_columns):
            raise InvalidConstraint(
                f"外键列数不匹配: {fk.name} ({len(fk.columns)} vs {len(fk.ref_columns)})",
                table=name, constraint_name=fk.name
            )

        if fk.on_delete not in OnDelete.ALL:
            raise InvalidConstraint(f"不支持的删除动作: {fk.on_delete}", table=name,
                                    constraint_name=fk.name)

        if fk.ref_table == name:
            target = definition
        else:
            target = self.tables.get(fk.ref_table)
            if target is None:
                raise InvalidConstraint(f"父表不存在: {fk.ref_table}", table=name,
                                        constraint_name=fk.name)

        for col in fk.ref_columns:
            if target.get_column(col) is None:
                raise InvalidConstraint(f"父表列不存在: {fk.ref_table}.{col}", table=name,
                                        constraint_name=fk.name)

        if not target.is_unique_set(fk.ref_columns):
            raise InvalidConstraint(
                f"外键 {fk.name} 引用的列 {fk.ref_table}({', '.join(fk.ref_columns)}) 不是主键或唯一约束",
                table=name, constraint_name=fk.name
            )

        if fk.on_delete == OnDelete.SET_NULL:
            for col in fk.columns:
                if not definition.is_nullable(col):
                    raise InvalidConstraint(
                        f"外键 {fk.name} 使用 SET NULL 但列 {name}.{col} 不可为空",
                        table=name, constraint_name=fk.name
                    )

    def _require_columns(self, definition: TableDefinition, columns, constraint_name: str):
        for col in columns:
            if definition.get_column(col) is None:
                raise InvalidConstraint(f"约束 {constraint_name} 引用了不存在的列: {definition.name}.{col}",
                                        table=definition.name, constraint_name=constraint_name)

    def _claim_name(self, definition: TableDefinition, constraint_name: str, seen: set):
        if constraint_name in seen:
            raise InvalidConstraint(f"重复的约束名: {constraint_name}", table=definition.name,
                                    constraint_name=constraint_name)
        seen.add(constraint_name)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    def get_table(self, table_name: str) -> TableDefinition:
        """获取表定义，表不存在时抛出 TableNotFound"""
        definition = self.tables.get(table_name)
        if definition is None:
            raise TableNotFound(f"表不存在: {table_name}", table=table_name)
        return definition

    def table_exists(self, table_name: str) -> bool:
        return table_name in self.tables

    def list_all_tables(self) -> List[str]:
        """按定义顺序列出所有表"""
        return list(self.tables.keys())

    def get_table_metadata(self, table_name: str) -> Optional[TableMetadata]:
        return self.table_meta.get(table_name)

    def get_foreign_keys(self, table_name: str) -> List[ForeignKeyConstraint]:
        definition = self.tables.get(table_name)
        if not definition:
            return []
        return list(definition.foreign_keys)

    def get_referencing_foreign_keys(self, ref_table_name: str) -> List[Tuple[str, ForeignKeyConstraint]]:
        """获取引用指定表的所有外键约束 [(子表名, 外键), ...]"""
        referencing = []
        for table_name, definition in self.tables.items():
            for fk in definition.foreign_keys:
                if fk.ref_table == ref_table_name:
                    referencing.append((table_name, fk))
        return referencing

    def dependent_tables(self, table_name: str) -> List[str]:
        """引用此表的其他表（不含自引用）"""
        result = []
        for child, _ in self.get_referencing_foreign_keys(table_name):
            if child != table_name and child not in result:
                result.append(child)
        return result

    def find_cycle(self, start: str, target: str) -> Optional[List[str]]:
        """
        沿外键边(子表→父表)从 start 出发查找到 target 的路径

        Returns:
            路径表名列表 [start, ..., target]，不存在时返回 None
        """
        parents: Dict[str, Optional[str]] = {start: None}
        queue = deque([start])

        while queue:
            current = queue.popleft()
            if current == target:
                path = []
                node = current
                while node is not None:
                    path.append(node)
                    node = parents[node]
                return list(reversed(path))

            for fk in self.get_foreign_keys(current):
                if fk.ref_table not in parents:
                    parents[fk.ref_table] = current
                    queue.append(fk.ref_table)

        return None

    def dependency_order(self) -> List[str]:
        """
        依赖顺序：子表排在它引用的父表之前（忽略自引用）
        """
        children_left = {name: len(self.dependent_tables(name)) for name in self.tables}
        ready = deque(name for name in self.tables if children_left[name] == 0)
        order = []

        while ready:
            name = ready.popleft()
            order.append(name)
            parents = {fk.ref_table for fk in self.tables[name].foreign_keys if fk.ref_table != name}
            for parent in self.tables:
                if parent in parents:
                    children_left[parent] -= 1
                    if children_left[parent] == 0:
                        ready.append(parent)

        if len(order) != len(self.tables):
            remaining = [name for name in self.tables if name not in order]
            raise CyclicForeignKey(f"外键图存在环: {', '.join(remaining)}", cycle=remaining)

        return order

    # ------------------------------------------------------------------
    # 关系推导
    # ------------------------------------------------------------------
    def is_join_table(self, table_name: str) -> bool:
        """
        连接表：主键完全由外键列组成，并引用至少两张其他表
        """
        definition = self.tables.get(table_name)
        if not definition:
            return False

        outward = [fk for fk in definition.foreign_keys if fk.ref_table != table_name]
        if len(outward) < 2:
            return False

        fk_cols = set()
        for fk in outward:
            fk_cols.update(fk.columns)
        return set(definition.primary_key) <= fk_cols

    def classify(self, child_table: str, fk: ForeignKeyConstraint) -> str:
        """外键列集合在子表上唯一 → 一对一，否则一对多"""
        definition = self.get_table(child_table)
        if definition.is_unique_set(fk.columns):
            return RelationshipKind.ONE_TO_ONE
        return RelationshipKind.ONE_TO_MANY

    def list_relationships(self) -> List[Relationship]:
        """列出所有表之间的关系"""
        relationships = []

        for table_name, definition in self.tables.items():
            if self.is_join_table(table_name):
                outward = [fk for fk in definition.foreign_keys if fk.ref_table != table_name]
                for i, left in enumerate(outward):
                    for right in outward[i + 1:]:
                        relationships.append(Relationship(
                            kind=RelationshipKind.MANY_TO_MANY,
                            parent_table=left.ref_table,
                            child_table=right.ref_table,
                            foreign_keys=(left.name, right.name),
                            via_table=table_name
                        ))
                continue

            for fk in definition.foreign_keys:
                relationships.append(Relationship(
                    kind=self.classify(table_name, fk),
                    parent_table=fk.ref_table,
                    child_table=table_name,
                    foreign_keys=(fk.name,)
                ))

        return relationships

    # ------------------------------------------------------------------
    # 报表
    # ------------------------------------------------------------------
    def get_schema_info(self, table_name: str, row_count: int = 0) -> Optional[Dict[str, Any]]:
        """获取表的完整schema信息"""
        definition = self.tables.get(table_name)
        if not definition:
            return None

        meta = self.table_meta[table_name]
        return {
            "table_name": table_name,
            "table_id": meta.table_id,
            "created_time": meta.created_time,
            "row_count": row_count,
            "columns": [
                {
                    "name": col.name,
                    "type": col.type,
                    "max_length": col.max_length,
                    "not_null": not definition.is_nullable(col.name),
                    "default": col.default,
                    "position": position
                }
                for position, col in enumerate(definition.columns)
            ],
            "primary_key": {"name": definition.pk_name, "columns": list(definition.primary_key)},
            "unique": [
                {"name": uc.name, "columns": list(uc.columns)}
                for uc in definition.unique_constraints
            ],
            "foreign_keys": [
                {
                    "name": fk.name,
                    "columns": list(fk.columns),
                    "ref_table": fk.ref_table,
                    "ref_columns": list(fk.ref_columns),
                    "on_delete": fk.on_delete
                }
                for fk in definition.foreign_keys
            ],
            "referenced_by": [
                {"table": child, "constraint": fk.name}
                for child, fk in self.get_referencing_foreign_keys(table_name)
            ]
        }

    def get_database_stats(self, row_store=None) -> Dict[str, Any]:
        """获取数据库统计信息"""
        total_rows = 0
        if row_store is not None:
            total_rows = sum(row_store.row_count(name) for name in self.tables)

        return {
            "total_tables": len(self.tables),
            "total_rows": total_rows,
            "total_unique_constraints": sum(len(d.unique_constraints) for d in self.tables.values()),
            "total_foreign_keys": sum(len(d.foreign_keys) for d in self.tables.values()),
            "join_tables": sum(1 for name in self.tables if self.is_join_table(name)),
            "next_table_id": self.next_table_id
        }
