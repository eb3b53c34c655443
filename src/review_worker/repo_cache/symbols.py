"""Symbol extraction for the repository index."""

import logging
import re
from functools import lru_cache

from tree_sitter_language_pack import get_parser

logger = logging.getLogger(__name__)

INDEXED_EXTENSIONS = frozenset(
    {".ts", ".tsx", ".js", ".jsx", ".vue", ".go", ".py", ".php", ".java", ".rb", ".cs"}
)

# Extensions with no grammar here (single-file components) only use the regex path
EXTENSION_GRAMMARS = {
    ".ts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".go": "go",
    ".py": "python",
    ".php": "php",
    ".java": "java",
    ".rb": "ruby",
    ".cs": "csharp",
}

SYMBOL_NODE_TYPES = frozenset(
    {
        "function_definition",
        "function_declaration",
        "generator_function_declaration",
        "class_definition",
        "class_declaration",
        "abstract_class_declaration",
        "interface_declaration",
        "type_alias_declaration",
        "enum_declaration",
        "struct_declaration",
        "record_declaration",
        "method_definition",
        "method_declaration",
        "variable_declarator",
        "type_spec",
        "trait_declaration",
        "method",
        "singleton_method",
        "class",
        "module",
    }
)

NAME_NODE_TYPES = frozenset(
    {"identifier", "property_identifier", "type_identifier", "constant", "name", "field_identifier"}
)

KEYWORDS = frozenset(
    {"if", "else", "for", "while", "return", "function", "class", "const", "let", "var", "new"}
)

_IDENTIFIER = re.compile(r"^\w+$")
_COMMENTS = re.compile(r"/\*[\s\S]*?\*/|//.*")
_FALLBACK_PATTERNS = (
    # Destructuring: const { a: b, c } = ... or const [a, b] = ...
    re.compile(r"(?:export\s+)?(?:const|let|var)\s+[{\[]([\w,\s:]+)[}\]]\s*="),
    re.compile(r"(?:export\s+)?(?:const|let|var)\s+(\w+)\s*="),
    re.compile(
        r"(?:export\s+(?:default\s+)?)?(?:function|class|interface|type|enum|struct|def|func)\s+(\w+)"
    ),
)


@lru_cache(maxsize=None)
def _parser_for(grammar: str):
    return get_parser(grammar)


def extract_symbols(content: str, extension: str) -> list[str]:
    """Names defined in a source file, in order of appearance.

    Parses with a tree-sitter grammar when one is available for the
    extension and falls back to regular expressions otherwise, or when
    parsing fails.
    """
    grammar = EXTENSION_GRAMMARS.get(extension.lower())
    if grammar:
        try:
            symbols = _tree_sitter_symbols(content, grammar)
        except Exception as e:
            logger.debug(f"AST parsing failed for {extension}, using regex fallback: {e}")
        else:
            if symbols:
                return symbols
    return regex_symbols(content)


def _tree_sitter_symbols(content: str, grammar: str) -> list[str]:
    tree = _parser_for(grammar).parse(content.encode("utf-8"))
    root = tree.root_node
    if root.has_error:
        logger.debug(f"Syntax errors in {grammar} source, extracting partial symbols")

    symbols: dict[str, None] = {}
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in SYMBOL_NODE_TYPES:
            name = _node_name(node)
            if name and _IDENTIFIER.match(name) and name not in KEYWORDS:
                symbols.setdefault(name)
        stack.extend(reversed(node.named_children))
    return list(symbols)


def _node_name(node) -> str | None:
    name_node = node.child_by_field_name("name")
    if name_node is None and node.type == "variable_declarator":
        name_node = node.child_by_field_name("id")
    if name_node is None:
        for child in node.named_children:
            if child.type in NAME_NODE_TYPES:
                name_node = child
                break
    if name_node is None or name_node.text is None:
        return None
    return name_node.text.decode("utf-8", errors="replace")


def regex_symbols(content: str) -> list[str]:
    """Regex-based symbol extraction for sources without a usable grammar."""
    stripped = _COMMENTS.sub("", content)
    symbols: dict[str, None] = {}
    for pattern in _FALLBACK_PATTERNS:
        for match in pattern.finditer(stripped):
            for part in match.group(1).split(","):
                part = part.strip()
                if ":" in part:
                    # { a: b } binds b
                    part = part.split(":")[-1].strip()
                if part and _IDENTIFIER.match(part):
                    symbols.setdefault(part)
    return list(symbols)
