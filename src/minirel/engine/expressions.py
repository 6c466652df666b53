# 文件路径: MiniRel/src/minirel/engine/expressions.py

"""
条件表达式 - 执行计划中的条件字典 → 行谓词

【表达式格式】
{"type": "compare", "left": "age", "op": ">=", "right": 18}
{"type": "like", "left": "name", "right": "A%"}
{"type": "in", "left": "id", "values": [1, 2, 3]}
{"type": "between", "left": "age", "min": 20, "max": 30}
{"type": "is_null", "left": "manager_id", "is_null": true}
{"type": "and" | "or", "left": {...}, "right": {...}}
{"type": "not", "condition": {...}}

【取值规则】
- {"type": "literal", "value": ...} 总是字面量
- 其他字典按嵌套表达式求值
- 字符串若是当前行的列名则取列值，否则原样作为字面量
- CLI 解析出的值全部带 literal 包装，不会被误当成列名
"""

import operator
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional, Callable

from minirel.errors import ExpressionError

Row = Dict[str, Any]

COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '=': operator.eq,
    '==': operator.eq,
    '!=': operator.ne,
    '<>': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}


class ExpressionEvaluator:
    """条件表达式求值器，NULL 参与的比较一律不成立"""

    EXPRESSION_TYPES = ("compare", "like", "in", "between", "is_null", "and", "or", "not")

    def evaluate(self, expression: Any, row: Row) -> Any:
        if not isinstance(expression, dict):
            return expression

        expr_type = expression.get("type")
        if expr_type not in self.EXPRESSION_TYPES:
            raise ExpressionError(f"不支持的表达式类型: {expr_type}")

        try:
            return getattr(self, f"_eval_{expr_type}")(expression, row)
        except KeyError as e:
            raise ExpressionError(f"{expr_type} 表达式缺少字段: {e}") from e

    def resolve(self, ref: Any, row: Row) -> Any:
        """操作数取值（列、字面量或嵌套表达式）"""
        if isinstance(ref, dict):
            if ref.get("type") == "literal":
                return ref.get("value")
            return self.evaluate(ref, row)
        if isinstance(ref, str) and ref in row:
            return row[ref]
        return ref

    def _eval_compare(self, expr: Dict[str, Any], row: Row) -> bool:
        comparator = COMPARATORS.get(expr["op"])
        if comparator is None:
            raise ExpressionError(f"不支持的比较操作符: {expr['op']}")
        return _null_safe(comparator, self.resolve(expr["left"], row), self.resolve(expr["right"], row))

    def _eval_like(self, expr: Dict[str, Any], row: Row) -> bool:
        text = self.resolve(expr["left"], row)
        pattern = self.resolve(expr["right"], row)
        if text is None or pattern is None:
            return False
        return _like_regex(str(pattern)).fullmatch(str(text)) is not None

    def _eval_in(self, expr: Dict[str, Any], row: Row) -> bool:
        value = self.resolve(expr["left"], row)
        candidates = (self.resolve(item, row) for item in expr.get("values", []))
        return any(_null_safe(operator.eq, value, candidate) for candidate in candidates)

    def _eval_between(self, expr: Dict[str, Any], row: Row) -> bool:
        value = self.resolve(expr["left"], row)
        return (_null_safe(operator.ge, value, self.resolve(expr["min"], row))
                and _null_safe(operator.le, value, self.resolve(expr["max"], row)))

    def _eval_is_null(self, expr: Dict[str, Any], row: Row) -> bool:
        is_null = self.resolve(expr["left"], row) is None
        return is_null if expr.get("is_null", True) else not is_null

    def _eval_and(self, expr: Dict[str, Any], row: Row) -> bool:
        return bool(self.evaluate(expr["left"], row)) and bool(self.evaluate(expr["right"], row))

    def _eval_or(self, expr: Dict[str, Any], row: Row) -> bool:
        return bool(self.evaluate(expr["left"], row)) or bool(self.evaluate(expr["right"], row))

    def _eval_not(self, expr: Dict[str, Any], row: Row) -> bool:
        return not self.evaluate(expr["condition"], row)


def _null_safe(comparator: Callable[[Any, Any], bool], left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    try:
        return bool(comparator(left, right))
    except TypeError:
        # 不同类型之间没有大小关系
        return False


@lru_cache(maxsize=128)
def _like_regex(pattern: str):
    """% → 任意串, _ → 单个字符，不区分大小写"""
    wildcards = {'%': '.*', '_': '.'}
    body = ''.join(wildcards.get(ch) or re.escape(ch) for ch in pattern)
    return re.compile(body, re.IGNORECASE | re.DOTALL)


def compile_predicate(condition: Optional[Dict[str, Any]]) -> Optional[Callable[[Row], bool]]:
    """条件字典 → 行谓词；condition 为空时返回 None（匹配全部行）"""
    if not condition:
        return None

    evaluator = ExpressionEvaluator()
    return lambda row: bool(evaluator.evaluate(condition, row))


# ----------------------------------------------------------------------
# 文本条件解析（CLI 的 .delete 使用）
# ----------------------------------------------------------------------
# 一个"词"由引号串和非空白字符拼接而成，引号内的空格和 AND 不会断开它
_WORD = re.compile(r"""(?:'[^']*'|"[^"]*"|[^\s'"])+""")
_LIST_ITEM = re.compile(r"""'[^']*'|"[^"]*"|[^,]+""")


def _literal(text: str) -> Dict[str, Any]:
    return {"type": "literal", "value": _parse_value(text)}


def _negate(expr: Dict[str, Any], negated: Optional[str]) -> Dict[str, Any]:
    return {"type": "not", "condition": expr} if negated else expr


def _build_is_null(m) -> Dict[str, Any]:
    return {"type": "is_null", "left": m.group("col"), "is_null": m.group("neg") is None}


def _build_between(m) -> Dict[str, Any]:
    expr = {"type": "between", "left": m.group("col"),
            "min": _literal(m.group("low")), "max": _literal(m.group("high"))}
    return _negate(expr, m.group("neg"))


def _build_in(m) -> Dict[str, Any]:
    items = [item for item in _LIST_ITEM.findall(m.group("items")) if item.strip()]
    if not items:
        raise ExpressionError(f"IN 列表为空: {m.group(0)}")
    expr = {"type": "in", "left": m.group("col"), "values": [_literal(item) for item in items]}
    return _negate(expr, m.group("neg"))


def _build_like(m) -> Dict[str, Any]:
    expr = {"type": "like", "left": m.group("col"), "right": _literal(m.group("pattern"))}
    return _negate(expr, m.group("neg"))


def _build_compare(m) -> Dict[str, Any]:
    return {"type": "compare", "left": m.group("col"), "op": m.group("op"), "right": _literal(m.group("value"))}


# 按顺序尝试，第一个完整匹配的生效
_CLAUSES = [
    (re.compile(r"(?P<col>\w+)\s+IS\s+(?P<neg>NOT\s+)?NULL", re.IGNORECASE), _build_is_null),
    (re.compile(r"(?P<col>\w+)\s+(?P<neg>NOT\s+)?BETWEEN\s+(?P<low>.+?)\s+AND\s+(?P<high>.+)",
                re.IGNORECASE), _build_between),
    (re.compile(r"(?P<col>\w+)\s+(?P<neg>NOT\s+)?IN\s*\((?P<items>.*)\)", re.IGNORECASE), _build_in),
    (re.compile(r"(?P<col>\w+)\s+(?P<neg>NOT\s+)?LIKE\s+(?P<pattern>.+)", re.IGNORECASE), _build_like),
    (re.compile(r"(?P<col>\w+)\s*(?P<op><>|!=|<=|>=|==|=|<|>)\s*(?P<value>.+)"), _build_compare),
]


def parse_simple_expression(expr_str: str) -> Dict[str, Any]:
    """
    解析文本条件为表达式字典

    支持: col = v / col <> v / col < v ...,
    col [NOT] LIKE 'p', col [NOT] IN (a, b), col [NOT] BETWEEN a AND b,
    col IS [NOT] NULL，以及用 AND 连接的组合。

    Raises:
        ExpressionError: 无法解析
    """
    clauses = [_parse_clause(text) for text in _split_conjuncts(expr_str.strip())]
    result = clauses[0]
    for clause in clauses[1:]:
        result = {"type": "and", "left": result, "right": clause}
    return result


def _parse_clause(text: str) -> Dict[str, Any]:
    for pattern, build in _CLAUSES:
        match = pattern.fullmatch(text)
        if match:
            return build(match)
    raise ExpressionError(f"无法解析表达式: {text}")


def _split_conjuncts(text: str) -> List[str]:
    """按顶层 AND 切分，BETWEEN 自带的 AND 不切"""
    parts = []
    start = 0
    inside_between = False
    for word in _WORD.finditer(text):
        keyword = word.group().upper()
        if keyword == 'BETWEEN':
            inside_between = True
        elif keyword == 'AND':
            if inside_between:
                inside_between = False
                continue
            parts.append(text[start:word.start()].strip())
            start = word.end()
    parts.append(text[start:].strip())
    return parts


def _parse_value(text: str) -> Any:
    """文本值 → Python 值：引号串、NULL、整数、浮点数，其余按原文"""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    if text.upper() == 'NULL':
        return None
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            continue
    return text
