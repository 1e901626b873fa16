"""
Static checks for generated dashboard code.

The sandbox's real boundary is its binding allow-list; this validator rejects
code that reaches for interpreter internals before it ever runs.
"""

import ast
import builtins
import re
from typing import Any, Callable, Optional

# Attribute names that lead from an ordinary object back into the interpreter
FORBIDDEN_ATTRIBUTES = frozenset({
    'gi_frame', 'gi_code', 'cr_frame', 'ag_frame', 'tb_frame', 'tb_next',
    'f_globals', 'f_locals', 'f_builtins', 'f_back', 'co_code', 'func_globals',
    'format_map', 'mro',
})

FORBIDDEN_CALLS = frozenset({
    'eval', 'exec', 'compile', 'open', 'input', '__import__',
    'getattr', 'setattr', 'delattr', 'globals', 'locals',
    'vars', 'dir', 'breakpoint', 'exit', 'quit', 'type', 'super',
    'memoryview', 'help',
})

# Names the generated code is given (for error messages)
AVAILABLE_BINDINGS = ("container", "data", "console")

SAFE_BUILTIN_NAMES = (
    "len", "str", "int", "float", "bool", "list", "dict", "tuple", "set",
    "frozenset", "range", "enumerate", "zip", "map", "filter", "sorted",
    "reversed", "min", "max", "sum", "any", "all", "abs", "round",
    "isinstance", "ord", "chr", "repr", "divmod", "pow", "slice",
)

SAFE_EXCEPTIONS = (
    Exception, ValueError, KeyError, IndexError, TypeError,
    ZeroDivisionError, AttributeError, StopIteration,
)

_FENCE_RE = re.compile(r'^\s*```[\w+-]*[ \t]*\n(.*?)\n?```\s*$', re.DOTALL)


class UnsafeCodeError(Exception):
    """Raised when generated code contains forbidden constructs."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Generated code rejected: " + "; ".join(self.errors))


def strip_markdown_fences(code: str) -> str:
    """
    Remove a markdown code fence wrapped around generated code.

    Handles ```python ... ``` and bare ``` ... ``` wrappers, with or without
    surrounding whitespace. Code without a fence is returned stripped.
    """
    if not code:
        return ""
    match = _FENCE_RE.match(code)
    if match:
        return match.group(1).strip("\n")
    return code.strip("\n")


def safe_builtins(print_func: Callable[..., Any]) -> dict[str, Any]:
    """
    Builtins exposed to generated code.

    Left out on purpose: getattr/setattr/delattr/hasattr (attribute bypass),
    type (metaclass tricks), eval/exec/compile, open/input, __import__.
    `print` is redirected to the sandbox console.
    """
    allowed = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}
    allowed.update({exc.__name__: exc for exc in SAFE_EXCEPTIONS})
    allowed["print"] = print_func
    return allowed


class CodeValidator(ast.NodeVisitor):
    """
    AST validator for generated code.

    Blocks:
    - Any underscore-prefixed attribute (__class__, _container, ...)
    - Frame/code object attributes
    - Dangerous calls (eval, exec, open, getattr, ...)
    - Imports of any kind
    - global/nonlocal declarations
    """

    def __init__(self):
        self.errors: list[str] = []
        self.syntax_error: Optional[SyntaxError] = None

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith('_'):
            self.errors.append(f"Forbidden attribute access: '{node.attr}'")
        elif node.attr in FORBIDDEN_ATTRIBUTES:
            self.errors.append(f"Forbidden attribute access: '{node.attr}'")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id in FORBIDDEN_CALLS:
            self.errors.append(f"Forbidden name: '{node.id}'")
        elif node.id.startswith('__'):
            self.errors.append(f"Forbidden name: '{node.id}'")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if isinstance(node.func, ast.Attribute) and node.func.attr in FORBIDDEN_CALLS:
            self.errors.append(f"Forbidden method call: '{node.func.attr}'")
        self.generic_visit(node)

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.errors.append(
                f"Import not allowed: 'import {alias.name}'. "
                f"Use the provided bindings: {', '.join(AVAILABLE_BINDINGS)}"
            )

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self.errors.append(
            f"Import not allowed: 'from {node.module} import ...'. "
            f"Use the provided bindings: {', '.join(AVAILABLE_BINDINGS)}"
        )

    def visit_Global(self, node: ast.Global) -> None:
        self.errors.append("'global' declarations are not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.errors.append("'nonlocal' declarations are not allowed")

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self.errors.append("Async code is not supported in dashboards")

    def validate(self, code: str) -> tuple[bool, list[str]]:
        """
        Validate code for safety.

        Returns:
            (is_safe, errors) tuple
        """
        self.errors = []
        self.syntax_error = None

        try:
            tree = ast.parse(code)
            self.visit(tree)
        except SyntaxError as e:
            self.syntax_error = e
            self.errors.append(f"Syntax error: {e}")

        return len(self.errors) == 0, self.errors


def validate_code(code: str) -> tuple[bool, list[str], Optional[SyntaxError]]:
    """
    Validate generated code for sandbox safety.

    Returns:
        (is_safe, errors, syntax_error) tuple
    """
    validator = CodeValidator()
    is_safe, errors = validator.validate(code)
    return is_safe, errors, validator.syntax_error
