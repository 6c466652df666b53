# 文件路径: MiniRel/src/minirel/cli/minirel_cli.py

"""
MiniRel 命令行
- 交互模式：输入JSON执行计划或系统命令
- 脚本模式：--file 执行JSON计划列表
- 单条模式：--plan 执行一条JSON计划
"""

import argparse
import json
import sys
import time
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from minirel import __version__
from minirel.engine.database import Database
from minirel.engine.executor import Executor
from minirel.engine.expressions import compile_predicate, parse_simple_expression
from minirel.errors import MiniRelError

# 三种关系的演示脚本：一对多、多对多、一对一
DEMO_PLANS: List[Dict[str, Any]] = [
    {"op": "CreateTable", "table": "department",
     "columns": [{"name": "id", "type": "INT"}, {"name": "name", "type": "VARCHAR", "max_length": 64}],
     "primary_key": ["id"], "unique": [["name"]]},
    {"op": "CreateTable", "table": "employee",
     "columns": [{"name": "id", "type": "INT"},
                 {"name": "name", "type": "VARCHAR", "max_length": 64},
                 {"name": "department_id", "type": "INT", "not_null": True}],
     "primary_key": ["id"],
     "foreign_keys": [{"columns": ["department_id"], "ref_table": "department", "ref_columns": ["id"]}]},
    {"op": "CreateTable", "table": "employee_profile",
     "columns": [{"name": "id", "type": "INT"}, {"name": "employee_id", "type": "INT", "not_null": True},
                 {"name": "bio", "type": "TEXT"}],
     "primary_key": ["id"], "unique": [["employee_id"]],
     "foreign_keys": [{"columns": ["employee_id"], "ref_table": "employee", "ref_columns": ["id"],
                       "on_delete": "CASCADE"}]},
    {"op": "CreateTable", "table": "book",
     "columns": [{"name": "id", "type": "INT"}, {"name": "title", "type": "VARCHAR", "max_length": 128}],
     "primary_key": ["id"]},
    {"op": "CreateTable", "table": "author",
     "columns": [{"name": "id", "type": "INT"}, {"name": "name", "type": "VARCHAR", "max_length": 128}],
     "primary_key": ["id"]},
    {"op": "CreateTable", "table": "book_author",
     "columns": [{"name": "book_id", "type": "INT"}, {"name": "author_id", "type": "INT"}],
     "primary_key": ["book_id", "author_id"],
     "foreign_keys": [{"columns": ["book_id"], "ref_table": "book", "ref_columns": ["id"]},
                      {"columns": ["author_id"], "ref_table": "author", "ref_columns": ["id"]}]},
    {"op": "Insert", "table": "department", "values": [[1, "Engineering"], [2, "Sales"]]},
    {"op": "Insert", "table": "employee", "values": [[1, "Alice", 1], [2, "Bob", 1], [3, "Carol", 2]]},
    {"op": "Insert", "table": "employee_profile", "values": [1, 1, "Backend engineer"]},
    {"op": "Insert", "table": "book", "values": [[1, "SQL Basics"], [2, "Schema Design"]]},
    {"op": "Insert", "table": "author", "values": [[1, "Codd"], [2, "Date"]]},
    {"op": "Insert", "table": "book_author", "values": [[1, 1], [1, 2], [2, 2]]},
    {"op": "Relationships"},
]


class IntegratedMiniRelCLI:
    """MiniRel 命令行"""

    def __init__(self, database: Optional[Database] = None, echo: bool = True):
        self.database = database or Database()
        self.executor = Executor(self.database)
        self.echo = echo
        self.last_failed = False

    def run_interactive(self):
        """启动交互模式"""
        self._show_banner()

        while True:
            try:
                line = input("minirel> ").strip()
            except KeyboardInterrupt:
                print("\n使用 .exit 退出")
                continue
            except EOFError:
                break

            if not line:
                continue
            if not self.run_command(line):
                break

        print("再见!")

    def run_command(self, line: str) -> bool:
        """执行一行输入，返回False表示退出"""
        if line.startswith('.'):
            return self._handle_system_command(line)

        try:
            plan = json.loads(line)
        except json.JSONDecodeError as e:
            print(f"无效的JSON计划: {e}")
            self.last_failed = True
            return True

        plans = plan if isinstance(plan, list) else [plan]
        for item in plans:
            if not self.process_plan(item):
                break
        return True

    def process_plan(self, plan: Dict[str, Any]) -> bool:
        """执行一条计划并打印结果，返回是否成功"""
        start_time = time.time()
        try:
            results = self.executor.execute_simple(plan)
        except MiniRelError as e:
            print(f"错误 [{e.error_type}]: {e}")
            self.last_failed = True
            return False

        self.last_failed = False
        elapsed = (time.time() - start_time) * 1000
        self._print_results(plan.get('op'), results)
        if self.echo:
            print(f"({elapsed:.2f} ms)")
        return True

    def run_script(self, plans: List[Dict[str, Any]]) -> bool:
        """依次执行计划列表，遇到错误停止"""
        for plan in plans:
            if self.echo:
                print(f"\n>>> {json.dumps(plan, ensure_ascii=False)}")
            if not self.process_plan(plan):
                return False
        return True

    def _print_results(self, op: str, results: List[Dict[str, Any]]):
        if not results:
            print("(空结果)")
            return

        if len(results) == 1 and "status" in results[0]:
            result = results[0]
            print(f"✓ {result['message']} (affected_rows={result.get('affected_rows', 0)})")
            for step in result.get("steps", []):
                print(f"   {step}")
            return

        headers = list(results[0].keys())
        table_data = [[row.get(h) for h in headers] for row in results]
        print(tabulate(table_data, headers=headers, tablefmt='grid'))
        print(f"{len(results)} 行")

    def _show_banner(self):
        print("\n" + "=" * 60)
        print(f"   MiniRel {__version__} - 关系约束引擎")
        print("=" * 60)
        print("输入JSON执行计划，或 .help 查看系统命令")
        print()

    def _handle_system_command(self, command: str) -> bool:
        parts = command.split(maxsplit=2)
        cmd = parts[0].lower()

        if cmd in ('.exit', '.quit'):
            return False
        elif cmd == '.help':
            self._show_help()
        elif cmd == '.tables':
            self._show_tables()
        elif cmd == '.schema':
            if len(parts) > 1:
                self._show_schema(parts[1])
            else:
                print("用法: .schema <table_name>")
        elif cmd == '.relationships':
            self._show_relationships()
        elif cmd == '.stats':
            self._show_stats()
        elif cmd == '.delete':
            if len(parts) > 1:
                self._delete_rows(parts[1], parts[2] if len(parts) > 2 else None)
            else:
                print("用法: .delete <table> [condition] [cascade]")
        elif cmd == '.drop':
            if len(parts) > 1:
                cascade = len(parts) > 2 and parts[2].strip().lower() == 'cascade'
                self.process_plan({"op": "DropTable", "table": parts[1], "cascade": cascade})
            else:
                print("用法: .drop <table> [cascade]")
        elif cmd == '.demo':
            self.run_script(DEMO_PLANS)
        else:
            print(f"未知命令: {command}")
            print("输入 .help 查看所有命令")
        return True

    def _delete_rows(self, table_name: str, condition_text: Optional[str]):
        # 末尾单独的 cascade 记号表示级联，条件可以省略
        cascade = False
        text = (condition_text or "").strip()
        tokens = text.split()
        if tokens and tokens[-1].lower() == 'cascade':
            text = text[:-len(tokens[-1])].rstrip()
            cascade = True
        condition_text = text or None

        try:
            condition = parse_simple_expression(condition_text) if condition_text else None
            deleted = self.database.delete(table_name, compile_predicate(condition), cascade=cascade)
        except MiniRelError as e:
            print(f"错误 [{e.error_type}]: {e}")
            self.last_failed = True
            return
        self.last_failed = False
        print(f"✓ 删除成功 (affected_rows={deleted})")

    def _show_tables(self):
        tables = self.database.list_tables()
        if not tables:
            print("数据库中暂无表")
            return

        table_info = []
        for name in tables:
            info = self.database.describe(name)
            table_info.append([
                name,
                len(info['columns']),
                info['row_count'],
                len(info['foreign_keys']),
                time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(info['created_time']))
            ])

        headers = ['表名', '列数', '行数', '外键数', '创建时间']
        print(tabulate(table_info, headers=headers, tablefmt='grid'))

    def _show_schema(self, table_name: str):
        info = self.database.describe(table_name)
        if not info:
            print(f"表不存在: {table_name}")
            return

        print(f"\n表结构: {table_name} (table_id={info['table_id']}, 行数={info['row_count']})")

        col_data = []
        for col in info['columns']:
            col_type = col['type'] + (f"({col['max_length']})" if col['max_length'] else "")
            col_data.append([col['position'], col['name'], col_type,
                             'NOT NULL' if col['not_null'] else '', col['default']])
        print(tabulate(col_data, headers=['位置', '列名', '类型', '非空', '默认值'], tablefmt='grid'))

        constraints = [['PRIMARY KEY', info['primary_key']['name'], ', '.join(info['primary_key']['columns']), '']]
        for uc in info['unique']:
            constraints.append(['UNIQUE', uc['name'], ', '.join(uc['columns']), ''])
        for fk in info['foreign_keys']:
            constraints.append([
                'FOREIGN KEY', fk['name'], ', '.join(fk['columns']),
                f"{fk['ref_table']}({', '.join(fk['ref_columns'])}) ON DELETE {fk['on_delete']}"
            ])
        print(tabulate(constraints, headers=['类型', '约束名', '列', '引用'], tablefmt='grid'))

    def _show_relationships(self):
        relationships = self.database.relationships()
        if not relationships:
            print("暂无表间关系")
            return

        rows = [[rel.kind, rel.parent_table, rel.child_table, rel.via_table or '', ', '.join(rel.foreign_keys)]
                for rel in relationships]
        print(tabulate(rows, headers=['关系', '父表', '子表', '连接表', '外键'], tablefmt='grid'))

    def _show_stats(self):
        stats = self.database.get_stats()
        rows = [[key, value] for key, value in stats.items()]
        print(tabulate(rows, headers=['统计项', '值'], tablefmt='grid'))

    def _show_help(self):
        print("""
=== MiniRel 帮助 ===

   系统命令:
   .help                        - 显示此帮助
   .exit                        - 退出
   .tables                      - 列出所有表
   .schema <table>              - 显示表结构和约束
   .relationships               - 显示表间关系(一对一/一对多/多对多)
   .stats                       - 显示统计信息
   .delete <table> [cond] [cascade] - 按条件删除行，例如 .delete employee id = 1
   .drop <table> [cascade]      - 删除表
   .demo                        - 运行部门/员工/图书示例

   执行计划(JSON，一行一个或一个数组):
   {"op": "Insert", "table": "department", "values": {"id": 3, "name": "HR"}}
   {"op": "SeqScan", "table": "employee", "condition": {"type": "compare", "left": "department_id", "op": "=", "right": 1}}
   {"op": "Delete", "table": "department", "condition": {...}, "cascade": true}
""")


def load_plans(path: str) -> List[Dict[str, Any]]:
    """读取计划脚本文件：JSON数组，或每行一个JSON对象"""
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()

    text = text.strip()
    if not text:
        return []
    if text.startswith('['):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def main(argv: Optional[List[str]] = None) -> int:
    """主函数"""
    parser = argparse.ArgumentParser(
        prog="minirel",
        description="MiniRel - 关系约束引擎 (主键/唯一/外键/级联删除)",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('--file', '-f', help='执行JSON计划脚本文件')
    parser.add_argument('--plan', '-p', help='执行一条JSON计划')
    parser.add_argument('--demo', action='store_true', help='运行示例脚本后进入交互模式')
    parser.add_argument('--quiet', '-q', action='store_true', help='不回显计划和耗时')
    parser.add_argument('--version', action='version', version=f'MiniRel {__version__}')

    args = parser.parse_args(argv)
    cli = IntegratedMiniRelCLI(echo=not args.quiet)

    try:
        if args.file:
            try:
                plans = load_plans(args.file)
            except (OSError, json.JSONDecodeError) as e:
                print(f"无法读取脚本: {e}")
                return 1
            return 0 if cli.run_script(plans) else 1

        if args.plan:
            return 0 if cli.run_command(args.plan) and not cli.last_failed else 1

        if args.demo:
            cli.run_script(DEMO_PLANS)
        cli.run_interactive()
        return 0

    except KeyboardInterrupt:
        print("\n程序被用户中断")
        return 1


if __name__ == "__main__":
    sys.exit(main())
