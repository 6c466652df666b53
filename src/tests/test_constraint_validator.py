# 文件路径: MiniRel/src/tests/test_constraint_validator.py

"""
约束校验测试

【测试用例】
- department(id PK) / employee(id PK, department_id FK→department.id NOT NULL)
  插入 department(1)，employee(1, 1) 成功，employee(2, 99) 外键违反
- book_author(book_id, author_id, PRIMARY KEY(book_id, author_id))
  插入 (1,1) 成功，再次插入 (1,1) 主键违反
- 唯一约束、一对一基数、非空、组合外键、自引用、更新校验
"""

import sys
import unittest
from pathlib import Path

# 添加src目录到路径
src_dir = Path(__file__).parent.parent
sys.path.insert(0, str(src_dir))

from minirel.engine.database import Database
from minirel.errors import (
    ConstraintValidationFailed, PrimaryKeyViolation, UniqueViolation, ForeignKeyViolation,
    NotNullViolation, UnknownColumn, TableNotFound
)


def build_company(db: Database):
    db.create_table("department",
                    [{"name": "id"}, {"name": "name", "type": "VARCHAR", "not_null": True}],
                    ["id"], unique=[["name"]])
    db.create_table("employee",
                    [{"name": "id"}, {"name": "email", "type": "VARCHAR"},
                     {"name": "department_id", "not_null": True},
                     {"name": "level", "default": 1}],
                    ["id"], unique=[["email"]],
                    foreign_keys=[{"columns": ["department_id"], "ref_table": "department",
                                   "ref_columns": ["id"]}])
    db.create_table("employee_profile",
                    [{"name": "id"}, {"name": "employee_id", "not_null": True}, {"name": "bio"}],
                    ["id"], unique=[["employee_id"]],
                    foreign_keys=[{"columns": ["employee_id"], "ref_table": "employee",
                                   "ref_columns": ["id"]}])


class TestInsertConstraints(unittest.TestCase):
    """插入校验"""

    def setUp(self):
        self.db = Database()
        build_company(self.db)
        self.db.insert("department", {"id": 1, "name": "Engineering"})

    def test_department_employee_scenario(self):
        self.assertEqual(self.db.insert("employee", {"id": 1, "department_id": 1}), (1,))

        with self.assertRaises(ForeignKeyViolation) as ctx:
            self.db.insert("employee", {"id": 2, "department_id": 99})

        error = ctx.exception
        self.assertEqual(error.constraint_name, "fk_employee_department_id_department_id")
        self.assertEqual(error.table, "employee")
        self.assertEqual(error.columns, ("department_id",))
        self.assertEqual(error.values, (99,))
        self.assertEqual(self.db.row_count("employee"), 1)

    def test_book_author_scenario(self):
        self.db.create_table("book_author", [{"name": "book_id"}, {"name": "author_id"}],
                             ["book_id", "author_id"])
        self.assertEqual(self.db.insert("book_author", {"book_id": 1, "author_id": 1}), (1, 1))

        with self.assertRaises(PrimaryKeyViolation) as ctx:
            self.db.insert("book_author", {"book_id": 1, "author_id": 1})
        self.assertEqual(ctx.exception.constraint_name, "pk_book_author")
        self.assertEqual(ctx.exception.values, (1, 1))

        self.db.insert("book_author", {"book_id": 1, "author_id": 2})
        self.assertEqual(self.db.row_count("book_author"), 2)

    def test_unique_violation_on_second_insert(self):
        self.db.insert("employee", {"id": 1, "email": "a@corp", "department_id": 1})
        with self.assertRaises(UniqueViolation) as ctx:
            self.db.insert("employee", {"id": 2, "email": "a@corp", "department_id": 1})
        self.assertEqual(ctx.exception.constraint_name, "uq_employee_email")

    def test_unique_ignores_null(self):
        self.db.insert("employee", {"id": 1, "department_id": 1})
        self.db.insert("employee", {"id": 2, "department_id": 1})
        self.assertEqual(self.db.row_count("employee"), 2)

    def test_one_to_one_cardinality(self):
        self.db.insert("employee", {"id": 1, "department_id": 1})
        self.db.insert("employee_profile", {"id": 1, "employee_id": 1, "bio": "first"})

        with self.assertRaises(UniqueViolation) as ctx:
            self.db.insert("employee_profile", {"id": 2, "employee_id": 1})
        self.assertEqual(ctx.exception.constraint_name, "uq_employee_profile_employee_id")

    def test_null_primary_key(self):
        with self.assertRaises(NotNullViolation) as ctx:
            self.db.insert("department", {"name": "Sales"})
        self.assertEqual(ctx.exception.constraint_name, "pk_department")

    def test_null_foreign_key_on_not_null_column(self):
        with self.assertRaises(NotNullViolation) as ctx:
            self.db.insert("employee", {"id": 1})
        self.assertEqual(ctx.exception.constraint_name, "fk_employee_department_id_department_id")

    def test_plain_not_null_column(self):
        with self.assertRaises(NotNullViolation) as ctx:
            self.db.insert("department", {"id": 2})
        self.assertEqual(ctx.exception.constraint_name, "nn_department_name")

    def test_violations_share_base_class(self):
        with self.assertRaises(ConstraintValidationFailed):
            self.db.insert("department", {"id": 1, "name": "Duplicate"})

    def test_first_violation_wins(self):
        # 主键冲突先于唯一约束
        with self.assertRaises(PrimaryKeyViolation):
            self.db.insert("department", {"id": 1, "name": "Engineering"})
        # 唯一约束先于外键
        self.db.insert("employee", {"id": 1, "email": "a@corp", "department_id": 1})
        with self.assertRaises(UniqueViolation):
            self.db.insert("employee", {"id": 2, "email": "a@corp", "department_id": 99})

    def test_default_values(self):
        self.db.insert("employee", {"id": 1, "department_id": 1})
        row = self.db.select("employee")[0]
        self.assertEqual(row, {"id": 1, "email": None, "department_id": 1, "level": 1})

    def test_unknown_column(self):
        with self.assertRaises(UnknownColumn) as ctx:
            self.db.insert("department", {"id": 2, "name": "Sales", "budget": 10})
        self.assertEqual(ctx.exception.column, "budget")

    def test_unknown_table(self):
        with self.assertRaises(TableNotFound):
            self.db.insert("nope", {"id": 1})

    def test_error_to_dict(self):
        with self.assertRaises(ForeignKeyViolation) as ctx:
            self.db.insert("employee", {"id": 2, "department_id": 99})
        info = ctx.exception.to_dict()
        self.assertEqual(info["etype"], "ForeignKeyViolation")
        self.assertEqual(info["values"], [99])


class TestForeignKeyShapes(unittest.TestCase):
    """组合外键与自引用"""

    def setUp(self):
        self.db = Database()

    def test_composite_foreign_key_match_simple(self):
        self.db.create_table("region", [{"name": "country"}, {"name": "code"}], ["country", "code"])
        self.db.create_table("office",
                             [{"name": "id"}, {"name": "country"}, {"name": "region_code"}], ["id"],
                             foreign_keys=[{"columns": ["country", "region_code"], "ref_table": "region",
                                            "ref_columns": ["country", "code"]}])
        self.db.insert("region", {"country": "CN", "code": "BJ"})

        self.db.insert("office", {"id": 1, "country": "CN", "region_code": "BJ"})
        # 部分为NULL时不检查
        self.db.insert("office", {"id": 2, "country": "US", "region_code": None})

        with self.assertRaises(ForeignKeyViolation) as ctx:
            self.db.insert("office", {"id": 3, "country": "US", "region_code": "BJ"})
        self.assertEqual(ctx.exception.values, ("US", "BJ"))

    def test_self_reference(self):
        self.db.create_table("node", [{"name": "id"}, {"name": "parent_id"}], ["id"],
                             foreign_keys=[{"columns": ["parent_id"], "ref_table": "node",
                                            "ref_columns": ["id"]}])

        self.db.insert("node", {"id": 1, "parent_id": 1})
        self.db.insert("node", {"id": 2, "parent_id": 1})
        self.db.insert("node", {"id": 3, "parent_id": None})

        with self.assertRaises(ForeignKeyViolation):
            self.db.insert("node", {"id": 4, "parent_id": 9})
        self.assertEqual(self.db.row_count("node"), 3)


class TestUpdateConstraints(unittest.TestCase):
    """更新校验与回滚"""

    def setUp(self):
        self.db = Database()
        build_company(self.db)
        self.db.insert("department", {"id": 1, "name": "Engineering"})
        self.db.insert("department", {"id": 2, "name": "Sales"})
        self.db.insert("employee", {"id": 1, "email": "a@corp", "department_id": 1})
        self.db.insert("employee", {"id": 2, "email": "b@corp", "department_id": 1})

    def test_update_foreign_key(self):
        updated = self.db.update("employee", {"department_id": 2}, lambda row: row["id"] == 1)
        self.assertEqual(updated, 1)
        self.assertEqual(self.db.select("employee", lambda row: row["id"] == 1)[0]["department_id"], 2)

    def test_update_to_missing_parent(self):
        with self.assertRaises(ForeignKeyViolation):
            self.db.update("employee", {"department_id": 99})
        rows = self.db.select("employee")
        self.assertEqual([row["department_id"] for row in rows], [1, 1])

    def test_update_unique_conflict_rolls_back(self):
        with self.assertRaises(UniqueViolation):
            self.db.update("employee", {"email": "same@corp"})
        self.assertEqual([row["email"] for row in self.db.select("employee")], ["a@corp", "b@corp"])

    def test_update_referenced_key(self):
        with self.assertRaises(ForeignKeyViolation) as ctx:
            self.db.update("department", {"id": 10}, lambda row: row["id"] == 1)
        self.assertEqual(ctx.exception.table, "department")

        # 未被引用的键可以修改
        self.assertEqual(self.db.update("department", {"id": 20}, lambda row: row["id"] == 2), 1)
        self.assertEqual([row["id"] for row in self.db.select("department")], [1, 20])

    def test_update_same_value_keeps_own_row(self):
        self.assertEqual(self.db.update("employee", {"email": "a@corp"}, lambda row: row["id"] == 1), 1)

    def test_update_unknown_column(self):
        with self.assertRaises(UnknownColumn):
            self.db.update("employee", {"salary": 1})


if __name__ == "__main__":
    unittest.main(verbosity=2)
