# 文件路径: MiniRel/src/tests/test_cascade.py

"""
级联删除测试

【测试范围】
1. 删除表：非级联遇到依赖表失败，级联删除依赖行、外键约束和连接表
2. 删除行：RESTRICT / CASCADE / SET NULL 三种删除动作
3. 外键环（自引用）上的级联遍历能够终止
4. 计划应用失败时整体回滚
"""

import sys
import unittest
from pathlib import Path

# 添加src目录到路径
src_dir = Path(__file__).parent.parent
sys.path.insert(0, str(src_dir))

from minirel.engine.database import Database
from minirel.engine.cascade import RemovalPlan, PlanStep, StepAction
from minirel.errors import (
    DependentTablesExist, ForeignKeyViolation, CascadeApplicationFailed, TableNotFound
)


def by_id(value):
    return lambda row: row["id"] == value


class TestDropTable(unittest.TestCase):
    """删除表"""

    def setUp(self):
        self.db = Database()
        self.db.create_table("department", [{"name": "id"}], ["id"])
        self.db.create_table("employee", [{"name": "id"}, {"name": "department_id", "not_null": True}],
                             ["id"],
                             foreign_keys=[{"columns": ["department_id"], "ref_table": "department",
                                            "ref_columns": ["id"]}])
        self.db.create_table("project", [{"name": "id"}, {"name": "department_id"}], ["id"],
                             foreign_keys=[{"columns": ["department_id"], "ref_table": "department",
                                            "ref_columns": ["id"], "on_delete": "SET NULL"}])

        for dept_id in (1, 2):
            self.db.insert("department", {"id": dept_id})
        self.db.insert("employee", {"id": 1, "department_id": 1})
        self.db.insert("employee", {"id": 2, "department_id": 2})
        self.db.insert("project", {"id": 1, "department_id": 1})
        self.db.insert("project", {"id": 2, "department_id": None})

    def test_drop_without_cascade_fails(self):
        with self.assertRaises(DependentTablesExist) as ctx:
            self.db.drop_table("department")

        self.assertEqual(ctx.exception.dependents, ["employee", "project"])
        self.assertEqual(self.db.list_tables(), ["department", "employee", "project"])
        self.assertEqual(self.db.row_count("employee"), 2)

    def test_drop_without_cascade_fails_even_when_dependents_are_empty(self):
        self.db.delete("employee")
        self.db.delete("project")
        with self.assertRaises(DependentTablesExist):
            self.db.drop_table("department")

    def test_drop_cascade_removes_dependent_rows(self):
        plan = self.db.drop_table("department", cascade=True)

        self.assertEqual(plan.dropped_tables, ["department"])
        self.assertEqual(self.db.list_tables(), ["employee", "project"])
        self.assertEqual(self.db.row_count("employee"), 0)
        # 外键为NULL的行不受影响
        self.assertEqual(self.db.select("project"), [{"id": 2, "department_id": None}])

        # 存活表上指向被删表的外键已删除
        self.assertEqual(self.db.describe("employee")["foreign_keys"], [])
        self.assertEqual(self.db.describe("project")["foreign_keys"], [])
        self.db.insert("employee", {"id": 3, "department_id": 42})

    def test_drop_cascade_plan_order(self):
        plan = self.db.drop_table("department", cascade=True)
        actions = [(step.action, step.table) for step in plan.steps]

        self.assertEqual(actions, [
            (StepAction.DELETE_ROWS, "employee"),
            (StepAction.DELETE_ROWS, "project"),
            (StepAction.DROP_CONSTRAINT, "employee"),
            (StepAction.DROP_CONSTRAINT, "project"),
            (StepAction.DROP_TABLE, "department"),
        ])
        self.assertEqual(plan.rows_removed("employee"), 2)

    def test_drop_leaf_table(self):
        plan = self.db.drop_table("employee")
        self.assertEqual(plan.dropped_tables, ["employee"])
        self.assertEqual(self.db.catalog_mgr.dependent_tables("department"), ["project"])

    def test_drop_missing_table(self):
        with self.assertRaises(TableNotFound):
            self.db.drop_table("nope", cascade=True)

    def test_drop_all(self):
        dropped = self.db.drop_all()
        self.assertEqual(sorted(dropped), ["department", "employee", "project"])
        self.assertEqual(self.db.list_tables(), [])
        self.assertEqual(self.db.get_stats()["total_tables"], 0)


class TestDropJoinTable(unittest.TestCase):
    """连接表随被引用表一起删除"""

    def setUp(self):
        self.db = Database()
        self.db.create_table("book", [{"name": "id"}], ["id"])
        self.db.create_table("author", [{"name": "id"}], ["id"])
        self.db.create_table("book_author", [{"name": "book_id"}, {"name": "author_id"}],
                             ["book_id", "author_id"],
                             foreign_keys=[
                                 {"columns": ["book_id"], "ref_table": "book", "ref_columns": ["id"]},
                                 {"columns": ["author_id"], "ref_table": "author", "ref_columns": ["id"]},
                             ])
        for i in (1, 2):
            self.db.insert("book", {"id": i})
            self.db.insert("author", {"id": i})
        self.db.insert("book_author", {"book_id": 1, "author_id": 1})
        self.db.insert("book_author", {"book_id": 2, "author_id": 1})

    def test_join_table_dropped_with_parent(self):
        plan = self.db.drop_table("book", cascade=True)

        self.assertEqual(plan.dropped_tables, ["book_author", "book"])
        self.assertEqual(self.db.list_tables(), ["author"])
        self.assertEqual(self.db.row_count("author"), 2)
        self.assertEqual(self.db.relationships(), [])

    def test_join_table_with_outside_dependents_survives(self):
        self.db.create_table("royalty", [{"name": "id"}, {"name": "book_id"}, {"name": "author_id"}], ["id"],
                             foreign_keys=[{"columns": ["book_id", "author_id"], "ref_table": "book_author",
                                            "ref_columns": ["book_id", "author_id"]}])
        self.db.insert("royalty", {"id": 1, "book_id": 1, "author_id": 1})

        plan = self.db.drop_table("book", cascade=True)

        self.assertEqual(plan.dropped_tables, ["book"])
        self.assertEqual(self.db.list_tables(), ["author", "book_author", "royalty"])
        self.assertEqual(self.db.row_count("book_author"), 0)
        self.assertEqual(self.db.row_count("royalty"), 0)
        self.assertEqual([fk["ref_table"] for fk in self.db.describe("book_author")["foreign_keys"]],
                         ["author"])


class TestDeleteRows(unittest.TestCase):
    """删除行时的外键动作"""

    def setUp(self):
        self.db = Database()
        self.db.create_table("department", [{"name": "id"}], ["id"])
        self.db.create_table("employee", [{"name": "id"}, {"name": "department_id", "not_null": True}],
                             ["id"],
                             foreign_keys=[{"columns": ["department_id"], "ref_table": "department",
                                            "ref_columns": ["id"], "on_delete": "CASCADE"}])
        self.db.create_table("employee_profile", [{"name": "id"}, {"name": "employee_id", "not_null": True}],
                             ["id"], unique=[["employee_id"]],
                             foreign_keys=[{"columns": ["employee_id"], "ref_table": "employee",
                                            "ref_columns": ["id"]}])
        self.db.create_table("project", [{"name": "id"}, {"name": "department_id"}], ["id"],
                             foreign_keys=[{"columns": ["department_id"], "ref_table": "department",
                                            "ref_columns": ["id"], "on_delete": "SET NULL"}])

        for dept_id in (1, 2):
            self.db.insert("department", {"id": dept_id})
        self.db.insert("employee", {"id": 1, "department_id": 1})
        self.db.insert("employee", {"id": 2, "department_id": 1})
        self.db.insert("employee", {"id": 3, "department_id": 2})
        self.db.insert("project", {"id": 1, "department_id": 1})
        self.db.insert("project", {"id": 2, "department_id": 2})

    def test_cascade_and_set_null(self):
        deleted = self.db.delete("department", by_id(1))

        self.assertEqual(deleted, 1)
        self.assertEqual([row["id"] for row in self.db.select("employee")], [3])
        self.assertEqual(self.db.select("project"),
                         [{"id": 1, "department_id": None}, {"id": 2, "department_id": 2}])

    def test_restrict_blocks_whole_delete(self):
        self.db.insert("employee_profile", {"id": 1, "employee_id": 1})

        with self.assertRaises(ForeignKeyViolation) as ctx:
            self.db.delete("department", by_id(1))

        self.assertEqual(ctx.exception.table, "employee_profile")
        self.assertEqual(ctx.exception.values, (1,))
        self.assertEqual(self.db.row_count("department"), 2)
        self.assertEqual(self.db.row_count("employee"), 3)
        self.assertEqual(self.db.select("project", by_id(1))[0]["department_id"], 1)

    def test_restrict_on_direct_delete(self):
        self.db.insert("employee_profile", {"id": 1, "employee_id": 3})
        with self.assertRaises(ForeignKeyViolation):
            self.db.delete("employee", by_id(3))
        self.assertEqual(self.db.delete("employee", by_id(1)), 1)

    def test_forced_cascade_overrides_actions(self):
        self.db.insert("employee_profile", {"id": 1, "employee_id": 1})

        deleted = self.db.delete("department", by_id(1), cascade=True)

        self.assertEqual(deleted, 1)
        self.assertEqual(self.db.row_count("employee_profile"), 0)
        self.assertEqual([row["id"] for row in self.db.select("project")], [2])

    def test_delete_without_matches(self):
        self.assertEqual(self.db.delete("department", by_id(99)), 0)

    def test_plan_delete_does_not_modify(self):
        plan = self.db.cascade_resolver.plan_delete("department", [(1,)])

        self.assertEqual(plan.describe(), [
            "SET NULL project(department_id) ON 1 rows",
            "DELETE 2 rows FROM employee",
            "DELETE 1 rows FROM department",
        ])
        self.assertEqual(plan.visited_tables, ["department", "employee"])
        self.assertEqual(self.db.row_count("employee"), 3)

    def test_restrict_satisfied_by_other_cascade_path(self):
        db = Database()
        db.create_table("a", [{"name": "id"}], ["id"])
        db.create_table("b", [{"name": "id"}, {"name": "a_id"}], ["id"],
                        foreign_keys=[{"columns": ["a_id"], "ref_table": "a", "ref_columns": ["id"],
                                       "on_delete": "CASCADE"}])
        db.create_table("c", [{"name": "id"}, {"name": "a_id"}, {"name": "b_id"}], ["id"],
                        foreign_keys=[
                            {"columns": ["b_id"], "ref_table": "b", "ref_columns": ["id"]},
                            {"columns": ["a_id"], "ref_table": "a", "ref_columns": ["id"], "on_delete": "CASCADE"},
                        ])
        db.insert("a", {"id": 1})
        db.insert("b", {"id": 1, "a_id": 1})
        db.insert("c", {"id": 1, "a_id": 1, "b_id": 1})

        self.assertEqual(db.delete("a"), 1)
        self.assertEqual(db.get_stats()["total_rows"], 0)


class TestCyclicRows(unittest.TestCase):
    """自引用外键上的级联遍历"""

    def setUp(self):
        self.db = Database()
        self.db.create_table("node", [{"name": "id"}, {"name": "parent_id"}], ["id"],
                             foreign_keys=[{"columns": ["parent_id"], "ref_table": "node",
                                            "ref_columns": ["id"], "on_delete": "CASCADE"}])
        self.db.insert("node", {"id": 1, "parent_id": None})
        self.db.insert("node", {"id": 2, "parent_id": 1})
        self.db.insert("node", {"id": 3, "parent_id": 2})
        self.db.insert("node", {"id": 4, "parent_id": None})
        # 1 -> 2 -> 3，再让 1 引用 3 形成行级环
        self.db.update("node", {"parent_id": 3}, by_id(1))

    def test_cascade_terminates_on_cycle(self):
        self.assertEqual(self.db.delete("node", by_id(2)), 1)
        self.assertEqual(self.db.select("node"), [{"id": 4, "parent_id": None}])

    def test_self_referencing_row(self):
        self.db.insert("node", {"id": 5, "parent_id": 5})
        self.assertEqual(self.db.delete("node", by_id(5)), 1)
        self.assertEqual(self.db.row_count("node"), 4)

    def test_drop_self_referencing_table(self):
        plan = self.db.drop_table("node")
        self.assertEqual(plan.dropped_tables, ["node"])
        self.assertEqual(self.db.list_tables(), [])


class TestPlanApplication(unittest.TestCase):
    """计划应用失败时回滚"""

    def setUp(self):
        self.db = Database()
        self.db.create_table("department", [{"name": "id"}], ["id"])
        self.db.create_table("employee", [{"name": "id"}, {"name": "department_id", "not_null": True}],
                             ["id"],
                             foreign_keys=[{"columns": ["department_id"], "ref_table": "department",
                                            "ref_columns": ["id"]}])
        self.db.insert("department", {"id": 1})
        self.db.insert("employee", {"id": 1, "department_id": 1})
        self.db.insert("employee", {"id": 2, "department_id": 1})

    def test_failed_step_rolls_back(self):
        plan = RemovalPlan("employee", [
            PlanStep(StepAction.DELETE_ROWS, "employee", [(1,)]),
            PlanStep(StepAction.DROP_CONSTRAINT, "employee", constraint="fk_employee_department_id_department_id"),
            PlanStep(StepAction.DELETE_ROWS, "employee", [(99,)]),
        ])

        with self.assertRaises(CascadeApplicationFailed) as ctx:
            self.db.apply_plan(plan)

        self.assertIs(ctx.exception.step, plan.steps[2])
        self.assertEqual(self.db.row_count("employee"), 2)
        self.assertEqual(len(self.db.describe("employee")["foreign_keys"]), 1)

    def test_rollback_copies_only_touched_tables(self):
        """回滚只恢复计划涉及的表，已删除的表回到原来的位置"""
        self.db.create_table("audit", [{"name": "id"}], ["id"])
        self.db.insert("audit", {"id": 1})
        audit_rows = self.db.row_store.tables["audit"]
        self.assertEqual(set(self.db.row_store.snapshot(["employee"])), {"employee"})

        plan = RemovalPlan("employee", [
            PlanStep(StepAction.DELETE_ROWS, "employee", [(1,), (2,)]),
            PlanStep(StepAction.DROP_TABLE, "employee"),
            PlanStep(StepAction.DELETE_ROWS, "employee", [(1,)]),
        ])
        with self.assertRaises(CascadeApplicationFailed):
            self.db.apply_plan(plan)

        self.assertEqual(self.db.list_tables(), ["department", "employee", "audit"])
        self.assertEqual(self.db.row_count("employee"), 2)
        self.assertEqual(self.db.describe("department")["referenced_by"][0]["table"], "employee")
        self.assertIs(self.db.row_store.tables["audit"], audit_rows)

    def test_set_null_on_not_null_column_fails(self):
        plan = RemovalPlan("department", [
            PlanStep(StepAction.SET_NULL, "employee", [(1,)], columns=("department_id",)),
        ])
        with self.assertRaises(CascadeApplicationFailed):
            self.db.apply_plan(plan)
        self.assertEqual(self.db.select("employee", by_id(1))[0]["department_id"], 1)

    def test_drop_table_step_on_missing_table(self):
        plan = RemovalPlan("ghost", [
            PlanStep(StepAction.DELETE_ROWS, "employee", [(1,), (2,)]),
            PlanStep(StepAction.DROP_TABLE, "ghost"),
        ])
        with self.assertRaises(CascadeApplicationFailed) as ctx:
            self.db.apply_plan(plan)
        self.assertEqual(ctx.exception.table, "ghost")
        self.assertEqual(self.db.row_count("employee"), 2)


if __name__ == "__main__":
    unittest.main(verbosity=2)
