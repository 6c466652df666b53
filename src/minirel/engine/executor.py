# 文件路径: MiniRel/src/minirel/engine/executor.py

"""
Executor - 执行计划解释器

【功能说明】
- 解释JSON格式的执行计划（每个计划一个 "op"）
- 调用 Database 完成约束校验和数据修改
- 引擎错误原样抛出，计划格式错误抛出 ExecutionError

【Plan JSON格式】
{"op": "CreateTable", "table": "employee",
 "columns": [{"name": "id", "type": "INT"}, {"name": "department_id", "type": "INT", "not_null": true}],
 "primary_key": ["id"],
 "unique": [["email"]],
 "foreign_keys": [{"columns": ["department_id"], "ref_table": "department",
                   "ref_columns": ["id"], "on_delete": "CASCADE"}]}
{"op": "DropTable", "table": "department", "cascade": true}
{"op": "AddForeignKey", "table": "employee", "foreign_key": {...}}
{"op": "Insert", "table": "department", "values": {"id": 1}}
{"op": "Insert", "table": "department", "columns": ["id"], "values": [1]}
{"op": "Delete", "table": "department", "condition": {...}, "cascade": false}
{"op": "Update", "table": "employee", "set": {"department_id": 2}, "condition": {...}}
{"op": "SeqScan", "table": "employee", "columns": ["id"], "condition": {...}}
{"op": "ShowTables"} / {"op": "Desc", "table": "employee"} / {"op": "Relationships"}
"""

from typing import Dict, List, Any, Iterator

from minirel.errors import ExecutionError
from .constraints import build_table_definition, foreign_key_from_dict
from .expressions import compile_predicate


class Executor:
    """执行计划解释器"""

    def __init__(self, database):
        self.database = database

        self.operators = {
            'CreateTable': self._create_table,
            'DropTable': self._drop_table,
            'AddForeignKey': self._add_foreign_key,
            'Insert': self._insert,
            'Delete': self._delete,
            'Update': self._update,
            'SeqScan': self._seq_scan,
            'ShowTables': self._show_tables,
            'Desc': self._desc,
            'Relationships': self._relationships,
        }

    def execute(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """执行计划，返回结果迭代器"""
        if not isinstance(plan, dict):
            raise ExecutionError(f"执行计划必须是对象: {plan!r}")

        op_type = plan.get('op')
        if not op_type:
            raise ExecutionError("计划缺少操作类型")

        handler = self.operators.get(op_type)
        if handler is None:
            raise ExecutionError(f"不支持的操作类型: {op_type}")

        return handler(plan)

    def execute_simple(self, plan: Dict[str, Any]) -> List[Dict[str, Any]]:
        """执行计划并返回完整结果列表(便于测试)"""
        return list(self.execute(plan))

    def execute_script(self, plans: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
        """依次执行多个计划，遇到错误立即停止"""
        return [self.execute_simple(plan) for plan in plans]

    # ------------------------------------------------------------------
    # 算子
    # ------------------------------------------------------------------
    def _create_table(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        columns = plan.get('columns')
        if not columns:
            raise ExecutionError("CREATE TABLE: 缺少列定义")

        primary_key = plan.get('primary_key')
        if not primary_key:
            raise ExecutionError("CREATE TABLE: 缺少主键")

        try:
            definition = build_table_definition(table_name, columns, primary_key,
                                                plan.get('unique'), plan.get('foreign_keys'))
        except (KeyError, TypeError) as e:
            raise ExecutionError(f"CREATE TABLE: 无效的定义: {e}")

        table_id = self.database.define_table(definition)
        yield {"status": "success", "message": f"表 {table_name} 已创建", "table_id": table_id,
               "affected_rows": 0}

    def _drop_table(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        removal = self.database.drop_table(table_name, cascade=bool(plan.get('cascade', False)))
        yield {
            "status": "success",
            "message": f"表 {', '.join(removal.dropped_tables)} 已删除",
            "dropped_tables": removal.dropped_tables,
            "steps": removal.describe(),
            "affected_rows": 0
        }

    def _add_foreign_key(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        fk_data = self._require(plan, 'foreign_key')
        try:
            fk = foreign_key_from_dict(fk_data)
        except (KeyError, TypeError) as e:
            raise ExecutionError(f"ADD FOREIGN KEY: 无效的定义: {e}")

        name = self.database.add_foreign_key(table_name, fk)
        yield {"status": "success", "message": f"外键 {name} 已添加", "affected_rows": 0}

    def _insert(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        values = plan.get('values')
        if values is None:
            raise ExecutionError("INSERT: 缺少插入值")

        # 单行: {...} 或 [v1, v2]；多行: [{...}, {...}] 或 [[...], [...]]
        if isinstance(values, list) and values and all(isinstance(v, (dict, list)) for v in values):
            rows = values
        else:
            rows = [values]
        columns = plan.get('columns')

        # 先整理全部行，整批插入失败时不留下任何一行
        records = []
        for row in rows:
            if not isinstance(row, dict):
                if not columns:
                    info = self.database.describe(table_name)
                    if info is None:
                        raise ExecutionError(f"表不存在: {table_name}")
                    columns = [col["name"] for col in info["columns"]]
                if len(columns) != len(row):
                    raise ExecutionError(f"列数不匹配: {len(columns)} vs {len(row)}")
                row = dict(zip(columns, row))
            records.append(row)

        keys = self.database.insert_many(table_name, records)
        yield {"status": "success", "message": "插入成功", "affected_rows": len(keys)}

    def _delete(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        predicate = compile_predicate(plan.get('condition'))
        deleted = self.database.delete(table_name, predicate, cascade=bool(plan.get('cascade', False)))
        yield {"status": "success", "message": "删除成功", "affected_rows": deleted}

    def _update(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        changes = plan.get('set')
        if not changes or not isinstance(changes, dict):
            raise ExecutionError("UPDATE: 缺少SET子句")

        predicate = compile_predicate(plan.get('condition'))
        updated = self.database.update(table_name, changes, predicate)
        yield {"status": "success", "message": "更新成功", "affected_rows": updated}

    def _seq_scan(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        predicate = compile_predicate(plan.get('condition'))
        for row in self.database.select(table_name, predicate, plan.get('columns')):
            yield row

    def _show_tables(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        for name in self.database.list_tables():
            yield {"table_name": name, "row_count": self.database.row_count(name)}

    def _desc(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        table_name = self._require(plan, 'table')
        info = self.database.describe(table_name)
        if info is None:
            raise ExecutionError(f"表不存在: {table_name}")
        for col in info["columns"]:
            yield {
                "column_name": col["name"],
                "type": col["type"] + (f"({col['max_length']})" if col["max_length"] else ""),
                "not_null": col["not_null"],
                "default": col["default"],
                "primary_key": col["name"] in info["primary_key"]["columns"]
            }

    def _relationships(self, plan: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        for rel in self.database.relationships():
            yield {
                "kind": rel.kind,
                "parent_table": rel.parent_table,
                "child_table": rel.child_table,
                "via_table": rel.via_table,
                "foreign_keys": list(rel.foreign_keys)
            }

    def _require(self, plan: Dict[str, Any], field_name: str) -> Any:
        value = plan.get(field_name)
        if value is None or value == "":
            raise ExecutionError(f"{plan.get('op')}: 缺少 {field_name}")
        return value
