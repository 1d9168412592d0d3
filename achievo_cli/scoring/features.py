"""
Diff Feature Extraction
───────────────────────
Turns unified-diff text into a DiffFeatureSummary: which kinds of files
were touched, how much changed, how many hunks, and a rough count of the
functions/classes/exports that were added in script-like files.

Classification is by path only:
  code  : extension in CODE_EXTS
  doc   : markdown/rst or a docs/ directory
  test  : *.test.*, *.spec.*, test_*.py, __tests__/, tests/
  config: manifests, lockfiles, tool configs
A path can land in more than one bucket (e.g. tests/test_x.py is code and test).
"""

import ast
import re
import textwrap
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

CODE_EXTS = {
    "ts", "tsx", "js", "jsx", "mjs", "cjs", "go", "rs", "py", "java", "kt", "c", "h",
    "cpp", "cc", "hpp", "rb", "php", "cs", "swift", "scala",
}
SCRIPT_EXTS = {"ts", "tsx", "js", "jsx", "mjs", "cjs", "py"}

_TEST_HINTS = [
    re.compile(r"\.test\.", re.I),
    re.compile(r"\.spec\.", re.I),
    re.compile(r"__tests__/"),
    re.compile(r"(^|/)tests?/", re.I),
    re.compile(r"(^|/)test_[^/]*\.py$", re.I),
    re.compile(r"_test\.(py|go)$", re.I),
]
_DOC_HINTS = [re.compile(r"\.md$", re.I), re.compile(r"(^|/)docs?/", re.I), re.compile(r"\.rst$", re.I)]
_MANIFEST_HINTS = [
    re.compile(r"(^|/)package\.json$", re.I),
    re.compile(r"(^|/)(pnpm-lock\.yaml|yarn\.lock|package-lock\.json)$", re.I),
    re.compile(r"(^|/)requirements[^/]*\.txt$", re.I),
    re.compile(r"(^|/)(pyproject\.toml|setup\.py|setup\.cfg|Pipfile|Pipfile\.lock|poetry\.lock|uv\.lock)$", re.I),
    re.compile(r"(^|/)(go\.mod|go\.sum|Cargo\.toml|Cargo\.lock|Gemfile|Gemfile\.lock|composer\.json|composer\.lock)$", re.I),
    re.compile(r"(^|/)(pom\.xml|build\.gradle(\.kts)?)$", re.I),
]
_CONFIG_HINTS = _MANIFEST_HINTS + [
    re.compile(r"(^|/)tsconfig[^/]*\.json$", re.I),
    re.compile(r"\.eslintrc", re.I),
    re.compile(r"\.prettierrc", re.I),
    re.compile(r"(^|/)vite\.config\.", re.I),
    re.compile(r"(^|/)webpack\.", re.I),
    re.compile(r"(^|/)(tox\.ini|\.flake8|mypy\.ini|\.pre-commit-config\.yaml)$", re.I),
]
_SECURITY_HINTS = [re.compile(p, re.I) for p in (r"auth", r"token", r"secret", r"crypto", r"password", r"oauth")]

_FUNC_PATTERNS = [
    re.compile(r"^\s*(export\s+)?(default\s+)?(async\s+)?function\b"),
    re.compile(r"^\s*(async\s+)?def\s+\w+\s*\("),
    re.compile(r"=>"),
]
_CLASS_PATTERN = re.compile(r"^\s*(export\s+)?(default\s+)?(abstract\s+)?class\s+\w+")
_EXPORT_PATTERNS = [
    re.compile(r"^\s*export\b"),
    re.compile(r"\bmodule\.exports\b"),
    re.compile(r"^\s*__all__\s*="),
]

_GIT_HEADER = re.compile(r"^diff --git a/(.*?) b/(.*)$")


@dataclass(frozen=True)
class SymbolCounts:
    functions: int = 0
    classes: int = 0
    exports: int = 0

    def __add__(self, other: "SymbolCounts") -> "SymbolCounts":
        return SymbolCounts(
            self.functions + other.functions,
            self.classes + other.classes,
            self.exports + other.exports,
        )

    @property
    def total(self) -> int:
        return self.functions + self.classes + self.exports


@dataclass(frozen=True)
class DiffFeatureSummary:
    files_total: int = 0
    code_files: int = 0
    doc_files: int = 0
    test_files: int = 0
    config_files: int = 0
    rename_or_move: int = 0
    additions: int = 0
    deletions: int = 0
    hunks: int = 0
    languages: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    dependency_changes: bool = False
    has_security_sensitive: bool = False
    symbols: Optional[SymbolCounts] = None

    @property
    def total_changed(self) -> int:
        return self.additions + self.deletions

    def as_dict(self) -> dict:
        return {
            "files_total": self.files_total,
            "code_files": self.code_files,
            "doc_files": self.doc_files,
            "test_files": self.test_files,
            "config_files": self.config_files,
            "rename_or_move": self.rename_or_move,
            "additions": self.additions,
            "deletions": self.deletions,
            "hunks": self.hunks,
            "languages": dict(self.languages),
            "dependency_changes": self.dependency_changes,
            "has_security_sensitive": self.has_security_sensitive,
            "symbols": None if self.symbols is None else {
                "functions": self.symbols.functions,
                "classes": self.symbols.classes,
                "exports": self.symbols.exports,
            },
        }

    def summary_line(self) -> str:
        langs = "+".join(sorted(self.languages)) or "-"
        return (
            f"code:{self.code_files} test:{self.test_files} doc:{self.doc_files} "
            f"config:{self.config_files} hunks:{self.hunks} renames:{self.rename_or_move} "
            f"langs:{langs} deps:{'yes' if self.dependency_changes else 'no'} "
            f"security:{'yes' if self.has_security_sensitive else 'no'}"
        )


def _strip_prefix(path: str) -> str:
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def classify_path(path: str) -> dict:
    p = _strip_prefix(path.strip())
    ext = PurePosixPath(p).suffix.lstrip(".").lower()
    return {
        "ext": ext,
        "code": ext in CODE_EXTS,
        "doc": any(r.search(p) for r in _DOC_HINTS),
        "test": any(r.search(p) for r in _TEST_HINTS),
        "config": any(r.search(p) for r in _CONFIG_HINTS),
        "security": any(r.search(p) for r in _SECURITY_HINTS),
        "manifest": any(r.search(p) for r in _MANIFEST_HINTS),
    }


def _heuristic_symbols(lines: List[str]) -> SymbolCounts:
    functions = classes = exports = 0
    for line in lines:
        if any(p.search(line) for p in _FUNC_PATTERNS):
            functions += 1
        if _CLASS_PATTERN.search(line):
            classes += 1
        if any(p.search(line) for p in _EXPORT_PATTERNS):
            exports += 1
    return SymbolCounts(functions, classes, exports)


def _python_symbols(source: str) -> Optional[SymbolCounts]:
    """Count defs/classes with a real parse. None when the added lines don't parse."""
    try:
        tree = ast.parse(textwrap.dedent(source))
    except (SyntaxError, ValueError):
        return None

    functions = classes = 0
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda)):
            functions += 1
        elif isinstance(node, ast.ClassDef):
            classes += 1

    exports = sum(
        1 for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
        and not node.name.startswith("_")
    )
    return SymbolCounts(functions, classes, exports)


def analyze_added_code(ext: str, lines: List[str]) -> SymbolCounts:
    counts = _heuristic_symbols(lines)
    if ext == "py" and lines:
        parsed = _python_symbols("\n".join(lines))
        if parsed is not None:
            return parsed
    return counts


def extract_diff_features(unified_diff: Optional[str]) -> DiffFeatureSummary:
    """Parse unified-diff text into a DiffFeatureSummary. Never raises on malformed input."""
    if not unified_diff:
        return DiffFeatureSummary()

    files: Dict[str, dict] = {}
    added_by_file: Dict[str, List[str]] = {}
    languages: Counter = Counter()
    additions = deletions = hunks = renames = 0
    current: Optional[str] = None
    in_hunk = False
    git_style = False

    def open_file(path: str):
        nonlocal current
        current = _strip_prefix(path)
        if current not in files:
            cls = classify_path(current)
            files[current] = cls
            if cls["code"]:
                languages[cls["ext"]] += 1

    for line in str(unified_diff).splitlines():
        if line.startswith("diff --git"):
            git_style = True
            m = _GIT_HEADER.match(line)
            if m:
                open_file(m.group(2))
            else:
                current = None
            in_hunk = False
            continue

        if not in_hunk:
            if line.startswith(("rename from ", "copy from ")):
                renames += 1
                continue
            if line.startswith(("rename to ", "copy to ", "similarity index", "dissimilarity index")):
                continue
            if line.startswith("--- "):
                continue
            if line.startswith("+++ "):
                # Plain unified diffs have no "diff --git" line; the +++ header names the file.
                target = line[4:].split("\t")[0].strip()
                if current is None and target != "/dev/null":
                    open_file(target)
                continue

        if line.startswith("@@"):
            hunks += 1
            in_hunk = True
            continue

        if in_hunk and not git_style and line.startswith(("--- a/", "--- /dev/null")):
            # Start of the next file in a plain unified diff.
            in_hunk = False
            current = None
            continue

        if line.startswith("+"):
            additions += 1
            if current is not None and files[current]["ext"] in SCRIPT_EXTS:
                added_by_file.setdefault(current, []).append(line[1:])
        elif line.startswith("-"):
            deletions += 1

    symbols = None
    for path, added in added_by_file.items():
        counts = analyze_added_code(files[path]["ext"], added)
        symbols = counts if symbols is None else symbols + counts

    return DiffFeatureSummary(
        files_total=len(files),
        code_files=sum(1 for f in files.values() if f["code"]),
        doc_files=sum(1 for f in files.values() if f["doc"]),
        test_files=sum(1 for f in files.values() if f["test"]),
        config_files=sum(1 for f in files.values() if f["config"]),
        rename_or_move=renames,
        additions=additions,
        deletions=deletions,
        hunks=hunks,
        languages=MappingProxyType(dict(languages)),
        dependency_changes=any(f["manifest"] for f in files.values()),
        has_security_sensitive=any(f["security"] for f in files.values()),
        symbols=symbols,
    )
