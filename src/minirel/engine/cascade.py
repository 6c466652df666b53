# 文件路径: MiniRel/src/minirel/engine/cascade.py

"""
CascadeResolver - 级联删除计划生成器

【功能说明】
- plan_drop: 删除表时计算需要连带删除的行、外键约束和连接表
- plan_delete: 删除行时按外键的 ON DELETE 动作计算连带影响

【遍历策略】
从被删除的表（或行）出发，沿反向外键边（父表 → 子表）做广度优先遍历：
- 每张表只登记一次（visited 集合），每行最多删除一次，外键环不会导致死循环
- 当前层被删除的行决定下一层需要处理的子表行
- 没有新的子表行时结束

【计划格式】
RemovalPlan.steps 按“子表在父表之前”排序：
- set_null:        将子表行的外键列置为NULL
- delete_rows:     删除子表行
- drop_constraint: 删除仍然存活的表上指向被删表的外键
- drop_table:      删除表定义及其全部行

生成器本身从不修改数据，计划由 Database 原子地应用。
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Set, Tuple

from minirel.errors import ForeignKeyViolation
from .constraints import OnDelete

Key = Tuple[Any, ...]


class StepAction:
    SET_NULL = "set_null"
    DELETE_ROWS = "delete_rows"
    DROP_CONSTRAINT = "drop_constraint"
    DROP_TABLE = "drop_table"


@dataclass
class PlanStep:
    """计划中的一步"""
    action: str
    table: str
    keys: List[Key] = field(default_factory=list)
    columns: Tuple[str, ...] = ()
    constraint: Optional[str] = None

    def describe(self) -> str:
        if self.action == StepAction.DELETE_ROWS:
            return f"DELETE {len(self.keys)} rows FROM {self.table}"
        if self.action == StepAction.SET_NULL:
            return f"SET NULL {self.table}({', '.join(self.columns)}) ON {len(self.keys)} rows"
        if self.action == StepAction.DROP_CONSTRAINT:
            return f"DROP CONSTRAINT {self.table}.{self.constraint}"
        return f"DROP TABLE {self.table}"


@dataclass
class RemovalPlan:
    """有序删除计划"""
    root: str
    steps: List[PlanStep] = field(default_factory=list)
    visited_tables: List[str] = field(default_factory=list)

    @property
    def dropped_tables(self) -> List[str]:
        return [s.table for s in self.steps if s.action == StepAction.DROP_TABLE]

    def rows_removed(self, table_name: str) -> int:
        return sum(len(s.keys) for s in self.steps
                   if s.action == StepAction.DELETE_ROWS and s.table == table_name)

    def describe(self) -> List[str]:
        return [step.describe() for step in self.steps]


class CascadeResolver:
    """级联计划生成器"""

    def __init__(self, catalog_mgr, row_store, validator):
        self.catalog_mgr = catalog_mgr
        self.row_store = row_store
        self.validator = validator

    def plan_drop(self, table_name: str) -> RemovalPlan:
        """
        计算删除表的级联计划

        - 被删表的所有行随表一起删除
        - 引用被删行的子表行被删除（与外键的 ON DELETE 动作无关）
        - 只作为连接表依附于被删表、且没有其他表引用的表一并删除
        - 存活表上指向被删表的外键被删除
        """
        drop_set = self._collect_drop_set(table_name)

        removed: Dict[str, Set[Key]] = {}
        plan = RemovalPlan(root=table_name)
        queue = deque()

        for name in drop_set:
            keys = self.row_store.find_keys(name)
            removed[name] = set(keys)
            plan.visited_tables.append(name)
            queue.append((name, keys))

        while queue:
            parent, parent_keys = queue.popleft()
            for child, fk, child_keys in self._referencing_rows(parent, parent_keys):
                fresh = [key for key in child_keys if key not in removed.get(child, set())]
                if not fresh:
                    continue
                if child not in removed:
                    removed[child] = set()
                    plan.visited_tables.append(child)
                removed[child].update(fresh)
                queue.append((child, fresh))

        for name in self._dependents_first(removed.keys()):
            if name not in drop_set:
                plan.steps.append(PlanStep(StepAction.DELETE_ROWS, name, self._ordered(name, removed[name])))

        for child in self.catalog_mgr.list_all_tables():
            if child in drop_set:
                continue
            for fk in self.catalog_mgr.get_foreign_keys(child):
                if fk.ref_table in drop_set:
                    plan.steps.append(PlanStep(StepAction.DROP_CONSTRAINT, child, constraint=fk.name))

        for name in self._dependents_first(drop_set):
            plan.steps.append(PlanStep(StepAction.DROP_TABLE, name))

        return plan

    def plan_delete(self, table_name: str, keys: List[Key], force_cascade: bool = False) -> RemovalPlan:
        """
        计算删除行的级联计划

        Args:
            table_name: 表名
            keys: 要删除的行主键
            force_cascade: 为True时所有引用都按 CASCADE 处理

        Raises:
            ForeignKeyViolation: 存在 RESTRICT 外键引用被删行
        """
        plan = RemovalPlan(root=table_name, visited_tables=[table_name])
        removed: Dict[str, Set[Key]] = {table_name: set(keys)}
        restricted: List[Tuple[str, Any, List[Key]]] = []
        nulled: Dict[Tuple[str, str], Tuple[Any, Set[Key]]] = {}
        queue = deque([(table_name, list(keys))])

        while queue:
            parent, parent_keys = queue.popleft()
            for child, fk, child_keys in self._referencing_rows(parent, parent_keys):
                fresh = [key for key in child_keys if key not in removed.get(child, set())]
                if not fresh:
                    continue

                action = OnDelete.CASCADE if force_cascade else fk.on_delete
                if action == OnDelete.RESTRICT:
                    restricted.append((child, fk, fresh))
                    continue
                if action == OnDelete.SET_NULL:
                    nulled.setdefault((child, fk.name), (fk, set()))[1].update(fresh)
                    continue

                if child not in removed:
                    removed[child] = set()
                    plan.visited_tables.append(child)
                removed[child].update(fresh)
                queue.append((child, fresh))

        # 被其他路径级联删除的行不再构成 RESTRICT 冲突
        for child, fk, child_keys in restricted:
            blocking = [key for key in child_keys if key not in removed.get(child, set())]
            if blocking:
                row = self.row_store.get_row(child, blocking[0])
                values = fk.local_values(row)
                raise ForeignKeyViolation(
                    f"外键约束违反: 无法删除记录，子表 '{child}' 中 {len(blocking)} 行通过 {fk.name} 引用值 {values}",
                    constraint_name=fk.name, table=child, columns=fk.columns, values=values
                )

        for (child, _), (fk, child_keys) in nulled.items():
            survivors = [key for key in child_keys if key not in removed.get(child, set())]
            if survivors:
                plan.steps.append(PlanStep(StepAction.SET_NULL, child,
                                           self._ordered(child, set(survivors)),
                                           columns=fk.columns, constraint=fk.name))

        for name in self._dependents_first(removed.keys()):
            plan.steps.append(PlanStep(StepAction.DELETE_ROWS, name, self._ordered(name, removed[name])))

        return plan

    def _collect_drop_set(self, table_name: str) -> List[str]:
        """被删表 + 随之失去意义的连接表（不动点迭代）"""
        drop_set = [table_name]
        changed = True

        while changed:
            changed = False
            for child in self.catalog_mgr.list_all_tables():
                if child in drop_set or not self.catalog_mgr.is_join_table(child):
                    continue
                if not any(fk.ref_table in drop_set for fk in self.catalog_mgr.get_foreign_keys(child)):
                    continue
                outside = [t for t in self.catalog_mgr.dependent_tables(child) if t not in drop_set]
                if outside:
                    continue
                drop_set.append(child)
                changed = True

        return drop_set

    def _referencing_rows(self, parent: str, parent_keys: List[Key]):
        """生成 (子表, 外键, 引用这些父行的子表行主键)"""
        parent_rows = [self.row_store.get_row(parent, key) for key in parent_keys]
        parent_rows = [row for row in parent_rows if row is not None]

        for child, fk in self.catalog_mgr.get_referencing_foreign_keys(parent):
            values = set()
            for row in parent_rows:
                ref_values = fk.referenced_values(row)
                if all(v is not None for v in ref_values):
                    values.add(ref_values)

            child_keys = self.validator.find_referencing_keys(child, fk, values)
            if child_keys:
                yield child, fk, child_keys

    def _dependents_first(self, tables) -> List[str]:
        order = {name: i for i, name in enumerate(self.catalog_mgr.dependency_order())}
        return sorted(tables, key=lambda name: order.get(name, -1))

    def _ordered(self, table_name: str, keys: Set[Key]) -> List[Key]:
        """按扫描顺序排列主键，便于输出稳定"""
        return [key for key in self.row_store.find_keys(table_name) if key in keys]
