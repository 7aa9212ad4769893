"""Runpad - Sandbox Access Policy

Keeps a script inside its own namespace:
- validate_tree() rejects, before compilation, access to private and dunder
  attributes, frame/code introspection attributes, dunder names, and
  str.format() templates that could walk attributes
- ModuleView is the read-only module wrapper the loader hands to scripts
- guarded getattr/setattr/delattr apply the same attribute rules at runtime
"""

import ast
import re
import string
import types
from typing import Callable, List

from runpad.engine.errors import SandboxViolation
from runpad.engine.lines import SCRIPT_FILENAME

# Reach frames, code objects and through them the host's module globals
INTROSPECTION_ATTRIBUTES = frozenset({
    'gi_frame', 'gi_code', 'gi_yieldfrom', 'gi_suspended',
    'cr_frame', 'cr_code', 'cr_await', 'cr_origin',
    'ag_frame', 'ag_code', 'ag_await',
    'f_back', 'f_builtins', 'f_code', 'f_globals', 'f_locals', 'f_trace',
    'tb_frame', 'tb_next',
})

FORMAT_METHODS = frozenset({'format', 'format_map'})

ALLOWED_DUNDER_NAMES = frozenset({'__name__'})

# Module attributes a view still exposes
VISIBLE_MODULE_DUNDERS = frozenset({'__all__'})

_FIELD_ATTRIBUTE = re.compile(r'\.([^.\[\]]*)')


def attribute_denied(name: str) -> bool:
    return name.startswith('_') or name in INTROSPECTION_ATTRIBUTES


def format_is_safe(template: str) -> bool:
    """True when no replacement field of a str.format template walks a denied attribute"""
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError:
        # str.format rejects the template itself at runtime
        return True
    for _, field_name, format_spec, _ in parsed:
        if field_name and any(attribute_denied(a) for a in _FIELD_ATTRIBUTE.findall(field_name)):
            return False
        if format_spec and not format_is_safe(format_spec):
            return False
    return True


# ============================================================
# Static check
# ============================================================

def _violation(node: ast.AST, message: str, lines: List[str]) -> SandboxViolation:
    lineno = getattr(node, 'lineno', None)
    offset = getattr(node, 'col_offset', 0) + 1
    text = lines[lineno - 1] if lineno and lineno <= len(lines) else None
    return SandboxViolation(message, (SCRIPT_FILENAME, lineno, offset, text))


def validate_tree(tree: ast.AST, source: str) -> None:
    """Raise SandboxViolation at the first construct the sandbox does not allow"""
    lines = source.splitlines()
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute):
            if attribute_denied(node.attr):
                raise _violation(node, f"Access to attribute '{node.attr}' is not allowed", lines)
            if node.attr in FORMAT_METHODS:
                receiver = node.value
                if not (isinstance(receiver, ast.Constant) and isinstance(receiver.value, str)):
                    raise _violation(node, f"'{node.attr}' is only allowed on string literals", lines)
                if not format_is_safe(receiver.value):
                    raise _violation(node, "Format string accesses a restricted attribute", lines)
        elif isinstance(node, ast.Name):
            if node.id.startswith('__') and node.id not in ALLOWED_DUNDER_NAMES:
                raise _violation(node, f"Name '{node.id}' is not allowed", lines)
        elif isinstance(node, ast.MatchClass):
            for name in node.kwd_attrs:
                if attribute_denied(name):
                    raise _violation(node, f"Access to attribute '{name}' is not allowed", lines)


# ============================================================
# Runtime guards
# ============================================================

def _check_name(name) -> None:
    if isinstance(name, str) and (attribute_denied(name) or name in FORMAT_METHODS):
        raise AttributeError(f"Access to attribute '{name}' is not allowed")


def guarded_getattr(obj, name, *default):
    _check_name(name)
    return getattr(obj, name, *default)


def guarded_setattr(obj, name, value):
    _check_name(name)
    setattr(obj, name, value)


def guarded_delattr(obj, name):
    _check_name(name)
    delattr(obj, name)


class ModuleView:
    """Read-only view of an imported module.

    Public attributes pass through. Private names are hidden, and so are
    modules the loader's policy does not admit (``datetime.sys``,
    ``uuid.os``). Nothing can be assigned or deleted, so a script cannot
    patch a module the host shares.
    """

    __slots__ = ('_view_module', '_view_admits')

    def __init__(self, module: types.ModuleType, admits: Callable[[types.ModuleType], bool]):
        object.__setattr__(self, '_view_module', module)
        object.__setattr__(self, '_view_admits', admits)

    def __getattr__(self, name):
        module = object.__getattribute__(self, '_view_module')
        if name.startswith('_') and name not in VISIBLE_MODULE_DUNDERS:
            raise AttributeError(f"module '{module.__name__}' has no attribute '{name}'")
        value = getattr(module, name)
        if isinstance(value, types.ModuleType):
            admits = object.__getattribute__(self, '_view_admits')
            if not admits(value):
                raise AttributeError(f"module '{module.__name__}' has no attribute '{name}'")
            return ModuleView(value, admits)
        return value

    def __setattr__(self, name, value):
        raise AttributeError("Module attributes are read-only in the sandbox")

    def __delattr__(self, name):
        raise AttributeError("Module attributes are read-only in the sandbox")

    def __dir__(self):
        module = object.__getattribute__(self, '_view_module')
        return [name for name in dir(module) if not name.startswith('_')]

    def __repr__(self):
        return repr(object.__getattribute__(self, '_view_module'))
