# 文件路径: MiniRel/src/minirel/engine/database.py

"""
Database - 约束引擎的统一入口

【功能说明】
- 组合 CatalogManager + RowStore + ConstraintValidator + CascadeResolver
- 对外提供逻辑操作：define_table, drop_table, insert, delete
  以及 insert_many, update, select, add_foreign_key, relationships, drop_all
- 每个操作都是一个原子步骤：要么完全生效，要么失败且不留任何修改

【数据流】
写请求 → Database(加锁) → ConstraintValidator(读取目录+行存储) → 成功后写入 RowStore
删除行/删除表 → CascadeResolver 生成计划 → apply_plan 原子应用(快照+回滚)

【并发】
所有操作经过同一把可重入锁串行化，读操作同样加锁，看不到执行了一半的级联删除。
"""

import threading
from typing import Dict, List, Any, Callable, Optional, Tuple

from minirel.errors import MiniRelError, CascadeApplicationFailed, UnknownColumn
from minirel.storage.row_store import RowStore
from .catalog_mgr import CatalogManager
from .cascade import CascadeResolver, RemovalPlan, PlanStep, StepAction
from .constraint_validator import ConstraintValidator
from .constraints import (
    TableDefinition, ForeignKeyConstraint, Relationship, build_table_definition
)

Predicate = Callable[[Dict[str, Any]], bool]


class Database:
    """约束引擎句柄（空库创建，drop_all 拆除）"""

    def __init__(self):
        self.catalog_mgr = CatalogManager()
        self.row_store = RowStore()
        self.validator = ConstraintValidator(self.catalog_mgr, self.row_store)
        self.cascade_resolver = CascadeResolver(self.catalog_mgr, self.row_store, self.validator)

        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------
    def define_table(self, definition: TableDefinition) -> int:
        """
        定义新表

        Raises:
            DuplicateTable: 表已存在
            InvalidConstraint: 约束定义无效
        """
        with self._lock:
            table_id = self.catalog_mgr.define_table(definition)
            self.row_store.create_table(definition.name, definition.primary_key)
            return table_id

    def create_table(self, name: str, columns: List[Dict[str, Any]], primary_key,
                     unique: Optional[List[Any]] = None,
                     foreign_keys: Optional[List[Dict[str, Any]]] = None) -> int:
        """define_table 的字典参数版本"""
        return self.define_table(build_table_definition(name, columns, primary_key, unique, foreign_keys))

    def add_foreign_key(self, table_name: str, fk: ForeignKeyConstraint) -> str:
        """
        为已有表添加外键，已有数据必须满足新外键

        Raises:
            InvalidConstraint: 外键定义无效或形成环
            ForeignKeyViolation / NotNullViolation: 已有数据不满足新外键
        """
        with self._lock:
            catalog_snapshot = self.catalog_mgr.snapshot([table_name])
            name = self.catalog_mgr.add_foreign_key(table_name, fk)
            try:
                stored = self.catalog_mgr.get_table(table_name).get_foreign_key(name)
                self.validator.validate_foreign_key_rows(table_name, stored)
            except MiniRelError:
                self.catalog_mgr.restore(catalog_snapshot)
                raise
            return name

    def drop_table(self, table_name: str, cascade: bool = False) -> RemovalPlan:
        """
        删除表

        Args:
            table_name: 表名
            cascade: 是否级联删除引用此表的行（以及只依附于它的连接表）

        Returns:
            已应用的删除计划

        Raises:
            TableNotFound: 表不存在
            DependentTablesExist: 非级联且存在依赖表
            CascadeApplicationFailed: 计划应用失败（已回滚）
        """
        with self._lock:
            self.catalog_mgr.check_drop(table_name, cascade)
            plan = self.cascade_resolver.plan_drop(table_name)
            self.apply_plan(plan)
            return plan

    def drop_all(self) -> List[str]:
        """按依赖顺序删除所有表"""
        with self._lock:
            dropped = []
            for name in self.catalog_mgr.dependency_order():
                if self.catalog_mgr.table_exists(name):
                    plan = self.drop_table(name, cascade=True)
                    dropped.extend(plan.dropped_tables)
            return dropped

    # ------------------------------------------------------------------
    # DML
    # ------------------------------------------------------------------
    def insert(self, table_name: str, row_data: Dict[str, Any]) -> Tuple[Any, ...]:
        """
        插入一行，未给出的列使用默认值

        Returns:
            新行的主键元组

        Raises:
            ConstraintValidationFailed: 违反约束（不写入任何数据）
        """
        with self._lock:
            row = self._complete_row(table_name, row_data)
            self.validator.validate_insert(table_name, row)
            return self.row_store.insert_row(table_name, row)

    def insert_many(self, table_name: str, rows: List[Dict[str, Any]]) -> List[Tuple[Any, ...]]:
        """
        批量插入，全部成功或全部回滚

        后面的行可以引用同一批中前面插入的行（自引用外键）

        Returns:
            各行的主键元组

        Raises:
            ConstraintValidationFailed: 任一行违反约束，本批次不写入任何数据
        """
        with self._lock:
            self.catalog_mgr.get_table(table_name)
            snapshot = self.row_store.snapshot([table_name])

            keys = []
            try:
                for row_data in rows:
                    keys.append(self.insert(table_name, row_data))
            except (KeyError, MiniRelError):
                self.row_store.restore(snapshot)
                raise

            return keys

    def delete(self, table_name: str, predicate: Optional[Predicate] = None,
               cascade: bool = False) -> int:
        """
        删除满足条件的行

        Args:
            predicate: 行 → bool，None 表示删除全部
            cascade: 为True时忽略外键的 RESTRICT/SET NULL，全部级联删除

        Returns:
            目标表中删除的行数

        Raises:
            ForeignKeyViolation: 存在 RESTRICT 引用（不删除任何行）
        """
        with self._lock:
            self.catalog_mgr.get_table(table_name)
            keys = self.row_store.find_keys(table_name, predicate)
            if not keys:
                return 0

            plan = self.cascade_resolver.plan_delete(table_name, keys, force_cascade=cascade)
            self.apply_plan(plan)
            return len(keys)

    def update(self, table_name: str, changes: Dict[str, Any],
               predicate: Optional[Predicate] = None) -> int:
        """
        更新满足条件的行，全部成功或全部回滚

        Returns:
            更新的行数
        """
        with self._lock:
            self.validator.validate_row_shape(table_name, changes)
            keys = self.row_store.find_keys(table_name, predicate)
            snapshot = self.row_store.snapshot([table_name])

            try:
                for key in keys:
                    old_row = self.row_store.get_row(table_name, key)
                    new_row = dict(old_row)
                    new_row.update(changes)
                    self.validator.validate_update(table_name, old_row, new_row)
                    self.row_store.replace_row(table_name, key, new_row)
            except (KeyError, MiniRelError):
                self.row_store.restore(snapshot)
                raise

            return len(keys)

    def select(self, table_name: str, predicate: Optional[Predicate] = None,
               columns: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """查询行（返回副本）"""
        with self._lock:
            definition = self.catalog_mgr.get_table(table_name)
            if columns:
                for col in columns:
                    if definition.get_column(col) is None:
                        raise UnknownColumn(f"列不存在: {table_name}.{col}", table=table_name, column=col)

            result = []
            for row in self.row_store.seq_scan(table_name):
                if predicate is not None and not predicate(row):
                    continue
                if columns:
                    row = {col: row.get(col) for col in columns}
                result.append(row)
            return result

    # ------------------------------------------------------------------
    # 计划应用
    # ------------------------------------------------------------------
    def apply_plan(self, plan: RemovalPlan) -> None:
        """
        原子地应用删除计划

        Raises:
            CascadeApplicationFailed: 任一步骤失败，所有修改回滚
        """
        with self._lock:
            touched = {step.table for step in plan.steps}
            store_snapshot = self.row_store.snapshot(touched)
            catalog_snapshot = self.catalog_mgr.snapshot(
                step.table for step in plan.steps if step.action == StepAction.DROP_CONSTRAINT
            )

            step = None
            try:
                for step in plan.steps:
                    self._apply_step(step)
            except (KeyError, MiniRelError) as e:
                self.row_store.restore(store_snapshot)
                self.catalog_mgr.restore(catalog_snapshot)
                if isinstance(e, CascadeApplicationFailed):
                    raise
                raise CascadeApplicationFailed(
                    f"级联计划应用失败 [{step.describe()}]: {e}", table=plan.root, step=step
                ) from e

            if len(plan.steps) > 1:
                print(f"级联计划已应用: {plan.root} ({len(plan.steps)}步)")

    def _apply_step(self, step: PlanStep):
        if step.action == StepAction.DELETE_ROWS:
            self.row_store.delete_keys(step.table, step.keys)

        elif step.action == StepAction.SET_NULL:
            definition = self.catalog_mgr.get_table(step.table)
            for col in step.columns:
                if not definition.is_nullable(col):
                    raise CascadeApplicationFailed(
                        f"无法将非空列 {step.table}.{col} 置为NULL", table=step.table, step=step
                    )
            for key in step.keys:
                row = self.row_store.get_row(step.table, key)
                if row is None:
                    raise KeyError(f"记录不存在: {step.table}{key}")
                for col in step.columns:
                    row[col] = None
                self.row_store.replace_row(step.table, key, row)

        elif step.action == StepAction.DROP_CONSTRAINT:
            if not self.catalog_mgr.drop_foreign_key(step.table, step.constraint):
                raise KeyError(f"约束不存在: {step.table}.{step.constraint}")

        elif step.action == StepAction.DROP_TABLE:
            self.row_store.drop_table(step.table)
            self.catalog_mgr.unregister_table(step.table)

        else:
            raise CascadeApplicationFailed(f"未知的计划步骤: {step.action}", table=step.table, step=step)

    # ------------------------------------------------------------------
    # 辅助
    # ------------------------------------------------------------------
    def _complete_row(self, table_name: str, row_data: Dict[str, Any]) -> Dict[str, Any]:
        """补齐未给出的列（默认值或NULL）"""
        self.validator.validate_row_shape(table_name, row_data)
        definition = self.catalog_mgr.get_table(table_name)
        return {
            col.name: row_data[col.name] if col.name in row_data else col.default
            for col in definition.columns
        }

    def relationships(self) -> List[Relationship]:
        with self._lock:
            return self.catalog_mgr.list_relationships()

    def describe(self, table_name: str) -> Optional[Dict[str, Any]]:
        """表结构+约束+行数，表不存在时返回None"""
        with self._lock:
            if not self.catalog_mgr.table_exists(table_name):
                return None
            return self.catalog_mgr.get_schema_info(table_name, self.row_store.row_count(table_name))

    def list_tables(self) -> List[str]:
        with self._lock:
            return self.catalog_mgr.list_all_tables()

    def row_count(self, table_name: str) -> int:
        with self._lock:
            return self.row_store.row_count(table_name)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return self.catalog_mgr.get_database_stats(self.row_store)
