# 文件路径: MiniRel/src/minirel/engine/constraint_validator.py

"""
约束校验器
实现主键、唯一约束、外键、非空约束的写前校验

【校验顺序】（第一个违规即终止）
1. 主键：主键列非空，且不与其他行重复
2. 唯一约束：按声明顺序，组合值不与其他行重复（含NULL的组合不参与比较）
3. 外键：按声明顺序，非空列不能为NULL；值全部非空时父表必须恰好有一行匹配
   其余 NOT NULL 列在外键之后检查

校验器只读取目录和行存储，不做任何修改。
"""

from typing import Dict, Any, List, Optional, Iterable, Set, Tuple

from minirel.errors import (
    UnknownColumn, PrimaryKeyViolation, UniqueViolation, ForeignKeyViolation, NotNullViolation
)
from .constraints import ForeignKeyConstraint, TableDefinition


class ConstraintValidator:
    """约束校验器"""

    def __init__(self, catalog_mgr, row_store):
        self.catalog_mgr = catalog_mgr
        self.row_store = row_store

    def validate_row_shape(self, table_name: str, row_data: Dict[str, Any]):
        """
        检查行中的列都在表定义中

        Raises:
            UnknownColumn: 出现未定义的列
        """
        definition = self.catalog_mgr.get_table(table_name)
        known = set(definition.column_names())
        for col in row_data:
            if col not in known:
                raise UnknownColumn(f"列不存在: {table_name}.{col}", table=table_name, column=col)

    def validate_insert(self, table_name: str, row_data: Dict[str, Any]):
        """
        验证插入操作

        Args:
            table_name: 要插入的表名
            row_data: 完整的行数据（已补齐默认值）

        Raises:
            ConstraintValidationFailed: 具体子类标明违反的约束
        """
        self.validate_row_shape(table_name, row_data)
        definition = self.catalog_mgr.get_table(table_name)
        self._check_row(definition, row_data, exclude_key=None)

    def validate_update(self, table_name: str, old_row: Dict[str, Any], new_row: Dict[str, Any]):
        """
        验证更新操作：新行按插入规则校验（排除旧行自身），
        被引用的键发生变化时按 RESTRICT 语义检查子表

        Raises:
            ConstraintValidationFailed: 具体子类标明违反的约束
        """
        self.validate_row_shape(table_name, new_row)
        definition = self.catalog_mgr.get_table(table_name)
        old_key = self.row_store.key_of(table_name, old_row)

        self._check_row(definition, new_row, exclude_key=old_key)
        self.validate_key_update(table_name, old_row, new_row)

    def validate_key_update(self, table_name: str, old_row: Dict[str, Any], new_row: Dict[str, Any]):
        """
        验证更新父表被引用键的操作

        Raises:
            ForeignKeyViolation: 子表存在引用旧值的记录
        """
        old_key = self.row_store.key_of(table_name, old_row)

        for child_table, fk in self.catalog_mgr.get_referencing_foreign_keys(table_name):
            old_value = fk.referenced_values(old_row)
            new_value = fk.referenced_values(new_row)

            if old_value == new_value or any(v is None for v in old_value):
                continue

            keys = self.find_referencing_keys(child_table, fk, {old_value})
            if child_table == table_name:
                keys = [key for key in keys if key != old_key]

            if keys:
                raise ForeignKeyViolation(
                    f"外键约束违反: 无法更新被引用键，子表 '{child_table}' 中 {len(keys)} 行引用值 {old_value}",
                    constraint_name=fk.name, table=table_name,
                    columns=fk.ref_columns, values=old_value
                )

    def _check_row(self, definition: TableDefinition, row_data: Dict[str, Any],
                   exclude_key: Optional[Tuple[Any, ...]]):
        table_name = definition.name

        # 1. 主键
        pk_values = tuple(row_data.get(col) for col in definition.primary_key)
        for col, value in zip(definition.primary_key, pk_values):
            if value is None:
                raise NotNullViolation(
                    f"主键列 '{table_name}.{col}' 不能为NULL",
                    constraint_name=definition.pk_name, table=table_name,
                    columns=definition.primary_key, values=pk_values
                )

        if pk_values != exclude_key and self.row_store.has_key(table_name, pk_values):
            raise PrimaryKeyViolation(
                f"主键冲突: {definition.pk_name}({', '.join(definition.primary_key)}) 的值 {pk_values} 已存在",
                constraint_name=definition.pk_name, table=table_name,
                columns=definition.primary_key, values=pk_values
            )

        # 2. 唯一约束
        for uc in definition.unique_constraints:
            values = tuple(row_data.get(col) for col in uc.columns)
            if any(v is None for v in values):
                continue

            for key, other in self._scan_with_keys(table_name):
                if key == exclude_key:
                    continue
                if tuple(other.get(col) for col in uc.columns) == values:
                    raise UniqueViolation(
                        f"唯一约束冲突: {uc.name}({', '.join(uc.columns)}) 的值 {values} 已存在",
                        constraint_name=uc.name, table=table_name,
                        columns=uc.columns, values=values
                    )

        # 3. 外键
        for fk in definition.foreign_keys:
            self._check_foreign_key(definition, fk, row_data, exclude_key)

        # 其余非空列
        checked = set(definition.primary_key) | definition.fk_columns()
        for col in definition.columns:
            if col.name in checked or not col.not_null:
                continue
            if row_data.get(col.name) is None:
                raise NotNullViolation(
                    f"列 '{table_name}.{col.name}' 不能为NULL",
                    constraint_name=f"nn_{table_name}_{col.name}", table=table_name,
                    columns=(col.name,), values=(None,)
                )

    def validate_foreign_key_rows(self, table_name: str, fk: ForeignKeyConstraint):
        """
        检查表中已有的每一行都满足外键（ALTER TABLE 添加外键时使用）

        Raises:
            ForeignKeyViolation / NotNullViolation
        """
        definition = self.catalog_mgr.get_table(table_name)
        for key, row in self._scan_with_keys(table_name):
            self._check_foreign_key(definition, fk, row, exclude_key=key)

    def _check_foreign_key(self, definition: TableDefinition, fk: ForeignKeyConstraint,
                           row_data: Dict[str, Any], exclude_key):
        table_name = definition.name
        values = fk.local_values(row_data)

        for col, value in zip(fk.columns, values):
            if value is None and not definition.is_nullable(col):
                raise NotNullViolation(
                    f"外键列 '{table_name}.{col}' 不能为NULL",
                    constraint_name=fk.name, table=table_name,
                    columns=fk.columns, values=values
                )

        # 组合外键部分为NULL时不检查
        if any(v is None for v in values):
            return

        if not self._parent_key_exists(table_name, fk, values, row_data, exclude_key):
            raise ForeignKeyViolation(
                f"外键约束违反: 在父表 '{fk.ref_table}({', '.join(fk.ref_columns)})' 中未找到值 {values}",
                constraint_name=fk.name, table=table_name,
                columns=fk.columns, values=values
            )

    def _parent_key_exists(self, table_name: str, fk: ForeignKeyConstraint, values: Tuple[Any, ...],
                           row_data: Dict[str, Any], exclude_key) -> bool:
        """检查父表中是否恰好存在一行匹配"""
        if fk.ref_table == table_name:
            # 自引用：允许引用自身
            if fk.referenced_values(row_data) == values:
                return True

        matches = 0
        for key, parent in self._scan_with_keys(fk.ref_table):
            if fk.ref_table == table_name and key == exclude_key:
                continue
            if fk.referenced_values(parent) == values:
                matches += 1
        return matches == 1

    def find_referencing_keys(self, child_table: str, fk: ForeignKeyConstraint,
                              parent_values: Set[Tuple[Any, ...]]) -> List[Tuple[Any, ...]]:
        """查找子表中外键值落在 parent_values 内的行主键"""
        if not parent_values:
            return []

        keys = []
        for key, row in self._scan_with_keys(child_table):
            values = fk.local_values(row)
            if any(v is None for v in values):
                continue
            if values in parent_values:
                keys.append(key)
        return keys

    def _scan_with_keys(self, table_name: str) -> Iterable[Tuple[Tuple[Any, ...], Dict[str, Any]]]:
        for row in self.row_store.seq_scan(table_name):
            yield self.row_store.key_of(table_name, row), row

    def get_constraint_info(self, table_name: str) -> Dict[str, Any]:
        """获取表的约束信息汇总"""
        definition = self.catalog_mgr.get_table(table_name)
        return {
            "primary_key": {"name": definition.pk_name, "columns": list(definition.primary_key)},
            "unique": [
                {"constraint_name": uc.name, "columns": list(uc.columns)}
                for uc in definition.unique_constraints
            ],
            "foreign_keys": [
                {
                    "constraint_name": fk.name,
                    "columns": list(fk.columns),
                    "ref_table": fk.ref_table,
                    "ref_columns": list(fk.ref_columns),
                    "on_delete": fk.on_delete
                }
                for fk in definition.foreign_keys
            ],
            "referenced_by": [
                {
                    "constraint_name": fk.name,
                    "child_table": child,
                    "child_columns": list(fk.columns),
                    "ref_columns": list(fk.ref_columns)
                }
                for child, fk in self.catalog_mgr.get_referencing_foreign_keys(table_name)
            ]
        }
