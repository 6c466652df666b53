# 文件路径: MiniRel/src/minirel/errors.py

"""
统一错误结构

【错误分类】
MiniRelError
├── DuplicateTable            表已存在
├── TableNotFound             表不存在
├── UnknownColumn             行数据中出现未定义的列
├── InvalidConstraint         约束定义无效
│   └── CyclicForeignKey      外键会在不同表之间形成环
├── DependentTablesExist      非级联删除表时仍有其他表引用
├── ConstraintValidationFailed 行数据违反约束
│   ├── PrimaryKeyViolation
│   ├── UniqueViolation
│   ├── ForeignKeyViolation
│   └── NotNullViolation
├── CascadeApplicationFailed  级联删除计划无法应用
├── ExpressionError           条件表达式无效
└── ExecutionError            执行计划格式错误

【传播原则】
- 任何校验失败都中止整个操作，不产生部分修改
- 错误携带约束名、表名、列和违规值，便于复现
"""

from typing import Any, Dict, List, Optional, Sequence


class MiniRelError(Exception):
    """所有引擎错误的基类"""

    error_type = "MiniRelError"

    def __init__(self, message: str, table: str = None):
        self.table = table
        self.hint = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "etype": self.error_type,
            "table": self.table,
            "hint": self.hint
        }


class DuplicateTable(MiniRelError):
    """表已存在"""
    error_type = "DuplicateTable"


class TableNotFound(MiniRelError):
    """表不存在"""
    error_type = "TableNotFound"


class UnknownColumn(MiniRelError):
    """列不存在"""
    error_type = "UnknownColumn"

    def __init__(self, message: str, table: str = None, column: str = None):
        self.column = column
        super().__init__(message, table)


class InvalidConstraint(MiniRelError):
    """约束定义无效"""
    error_type = "InvalidConstraint"

    def __init__(self, message: str, table: str = None, constraint_name: str = None):
        self.constraint_name = constraint_name
        super().__init__(message, table)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["constraint"] = self.constraint_name
        return result


class CyclicForeignKey(InvalidConstraint):
    """外键环"""
    error_type = "CyclicForeignKey"

    def __init__(self, message: str, table: str = None, constraint_name: str = None,
                 cycle: Optional[List[str]] = None):
        self.cycle = list(cycle or [])
        super().__init__(message, table, constraint_name)


class DependentTablesExist(MiniRelError):
    """存在依赖表"""
    error_type = "DependentTablesExist"

    def __init__(self, message: str, table: str = None, dependents: Optional[List[str]] = None):
        self.dependents = list(dependents or [])
        super().__init__(message, table)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["dependents"] = self.dependents
        return result


class ConstraintValidationFailed(MiniRelError):
    """约束校验失败"""
    error_type = "ConstraintValidationFailed"

    def __init__(self, message: str, constraint_name: str = None, table: str = None,
                 columns: Sequence[str] = (), values: Sequence[Any] = ()):
        self.constraint_name = constraint_name
        self.columns = tuple(columns)
        self.values = tuple(values)
        super().__init__(message, table)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "constraint": self.constraint_name,
            "columns": list(self.columns),
            "values": list(self.values)
        })
        return result


class PrimaryKeyViolation(ConstraintValidationFailed):
    error_type = "PrimaryKeyViolation"


class UniqueViolation(ConstraintValidationFailed):
    error_type = "UniqueViolation"


class ForeignKeyViolation(ConstraintValidationFailed):
    error_type = "ForeignKeyViolation"


class NotNullViolation(ConstraintValidationFailed):
    error_type = "NotNullViolation"


class CascadeApplicationFailed(MiniRelError):
    """级联计划应用失败，所有修改已回滚"""
    error_type = "CascadeApplicationFailed"

    def __init__(self, message: str, table: str = None, step: Any = None):
        self.step = step
        super().__init__(message, table)


class ExpressionError(MiniRelError):
    """表达式求值错误"""
    error_type = "ExpressionError"


class ExecutionError(MiniRelError):
    """执行计划错误"""
    error_type = "ExecutionError"
