# 文件路径: MiniRel/src/minirel/engine/constraints.py

"""
约束元数据定义
表定义、列定义、唯一约束、外键约束以及派生的关系类型
"""

from typing import List, Dict, Optional, Any, Tuple
from dataclasses import dataclass, field


class ColumnType:
    """列类型定义（仅描述语义，不做值转换）"""
    INT = "INT"
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"
    FLOAT = "FLOAT"
    BOOL = "BOOL"
    DATE = "DATE"

    ALL = (INT, VARCHAR, TEXT, FLOAT, BOOL, DATE)


class OnDelete:
    """外键删除动作"""
    RESTRICT = "RESTRICT"
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"

    ALL = (RESTRICT, CASCADE, SET_NULL)


class RelationshipKind:
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


@dataclass
class ColumnDef:
    """列定义"""
    name: str
    type: str = ColumnType.INT
    not_null: bool = False
    default: Any = None
    max_length: Optional[int] = None

    def __repr__(self):
        text = self.type
        if self.max_length:
            text += f"({self.max_length})"
        if self.not_null:
            text += " NOT NULL"
        return f"{self.name} {text}"


@dataclass
class UniqueConstraint:
    """唯一约束定义"""
    columns: Tuple[str, ...]
    name: Optional[str] = None

    def __post_init__(self):
        self.columns = tuple(self.columns)


@dataclass
class ForeignKeyConstraint:
    """外键约束定义"""
    columns: Tuple[str, ...]  # 子表列
    ref_table: str  # 父表
    ref_columns: Tuple[str, ...]  # 父表列
    name: Optional[str] = None
    on_delete: str = OnDelete.RESTRICT

    def __post_init__(self):
        if isinstance(self.columns, str):
            self.columns = (self.columns,)
        if isinstance(self.ref_columns, str):
            self.ref_columns = (self.ref_columns,)
        self.columns = tuple(self.columns)
        self.ref_columns = tuple(self.ref_columns)
        self.on_delete = (self.on_delete or OnDelete.RESTRICT).upper().replace("_", " ")

    def local_values(self, row: Dict[str, Any]) -> Tuple[Any, ...]:
        return tuple(row.get(col) for col in self.columns)

    def referenced_values(self, row: Dict[str, Any]) -> Tuple[Any, ...]:
        return tuple(row.get(col) for col in self.ref_columns)


@dataclass
class TableDefinition:
    """
    表定义

    主键列隐含唯一且非空；外键引用的列必须是目标表的主键或唯一约束。
    """
    name: str
    columns: List[ColumnDef]
    primary_key: Tuple[str, ...]
    unique_constraints: List[UniqueConstraint] = field(default_factory=list)
    foreign_keys: List[ForeignKeyConstraint] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.primary_key, str):
            self.primary_key = (self.primary_key,)
        self.primary_key = tuple(self.primary_key)

    @property
    def pk_name(self) -> str:
        return f"pk_{self.name}"

    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def get_column(self, name: str) -> Optional[ColumnDef]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def is_nullable(self, column_name: str) -> bool:
        """主键列永远非空"""
        if column_name in self.primary_key:
            return False
        col = self.get_column(column_name)
        return col is not None and not col.not_null

    def key_sets(self) -> List[Tuple[str, ...]]:
        """主键及所有唯一约束的列集合"""
        return [self.primary_key] + [uc.columns for uc in self.unique_constraints]

    def is_unique_set(self, columns) -> bool:
        wanted = set(columns)
        return any(set(key) == wanted for key in self.key_sets())

    def get_foreign_key(self, name: str) -> Optional[ForeignKeyConstraint]:
        for fk in self.foreign_keys:
            if fk.name == name:
                return fk
        return None

    def fk_columns(self) -> set:
        cols = set()
        for fk in self.foreign_keys:
            cols.update(fk.columns)
        return cols


@dataclass
class Relationship:
    """由约束位置推导出的关系（不存储）"""
    kind: str
    parent_table: str
    child_table: str
    foreign_keys: Tuple[str, ...]
    via_table: Optional[str] = None

    def describe(self) -> str:
        if self.via_table:
            return f"{self.parent_table} <-> {self.child_table} ({self.kind} via {self.via_table})"
        return f"{self.parent_table} -> {self.child_table} ({self.kind})"


def build_table_definition(name: str, columns: List[Dict[str, Any]], primary_key,
                           unique: Optional[List[Any]] = None,
                           foreign_keys: Optional[List[Dict[str, Any]]] = None) -> TableDefinition:
    """
    从字典格式构造表定义（执行计划和CLI使用）

    Args:
        name: 表名
        columns: [{"name": "id", "type": "INT", "not_null": True}, ...]
        primary_key: 列名或列名列表
        unique: [["email"], {"name": "uq_x", "columns": ["a", "b"]}, ...]
        foreign_keys: [{"columns": [...], "ref_table": ..., "ref_columns": [...],
                        "name": ..., "on_delete": ...}, ...]
    """
    col_defs = []
    for col in columns:
        col_defs.append(ColumnDef(
            name=col["name"],
            type=str(col.get("type", ColumnType.INT)).upper(),
            not_null=bool(col.get("not_null", False)),
            default=col.get("default"),
            max_length=col.get("max_length")
        ))

    uniques = []
    for item in unique or []:
        if isinstance(item, dict):
            uniques.append(UniqueConstraint(tuple(item["columns"]), item.get("name")))
        elif isinstance(item, str):
            uniques.append(UniqueConstraint((item,)))
        else:
            uniques.append(UniqueConstraint(tuple(item)))

    fks = [foreign_key_from_dict(fk) for fk in foreign_keys or []]

    return TableDefinition(name, col_defs, primary_key, uniques, fks)


def foreign_key_from_dict(data: Dict[str, Any]) -> ForeignKeyConstraint:
    return ForeignKeyConstraint(
        columns=data["columns"],
        ref_table=data["ref_table"],
        ref_columns=data["ref_columns"],
        name=data.get("name"),
        on_delete=data.get("on_delete", OnDelete.RESTRICT)
    )
