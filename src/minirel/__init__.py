# 文件路径: MiniRel/src/minirel/__init__.py
"""
MiniRel - 最小关系约束引擎
主键/唯一/外键约束校验，级联删除，表间关系分类
"""

__version__ = "1.0.0"

from minirel.engine.database import Database  # noqa: E402
from minirel.errors import (  # noqa: E402
    MiniRelError, DuplicateTable, TableNotFound, UnknownColumn, InvalidConstraint, CyclicForeignKey,
    DependentTablesExist, ConstraintValidationFailed, PrimaryKeyViolation, UniqueViolation,
    ForeignKeyViolation, NotNullViolation, CascadeApplicationFailed, ExpressionError, ExecutionError
)
