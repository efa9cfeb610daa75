"""
Literal prefix rewriting for inbound request paths.

Rules are plain string prefixes, never regular expressions. The first rule
whose prefix matches the start of the path is applied and the rest of the
path, query string included, is kept as-is.
"""

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class RewriteRule:
    """Replace ``match_prefix`` at the start of a path with ``replacement_prefix``."""

    match_prefix: str
    replacement_prefix: str = ""

    def matches(self, path: str) -> bool:
        return path.startswith(self.match_prefix)

    def apply(self, path: str) -> str:
        return self.replacement_prefix + path[len(self.match_prefix):]


def rewrite_path(path: str, rules: Iterable[RewriteRule]) -> str:
    """Return ``path`` rewritten by the first matching rule, or unchanged."""
    for rule in rules:
        if rule.matches(path):
            return rule.apply(path)
    return path


def parse_rewrite_rules(raw: str) -> tuple[RewriteRule, ...]:
    """
    Parse ``"match=replacement,match2=replacement2"`` into rules.

    A leading ``^`` on the match side is accepted for compatibility with
    anchored-regex style configuration and dropped, since matching is always
    anchored at the start of the path.
    """
    rules = []
    if not raw:
        return ()
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            raise ValueError(f"Invalid PATH_REWRITE entry (expected match=replacement): {entry!r}")
        match, replacement = entry.split("=", 1)
        match = match.strip()
        if match.startswith("^"):
            match = match[1:]
        if not match:
            raise ValueError(f"Invalid PATH_REWRITE entry (empty match prefix): {entry!r}")
        rules.append(RewriteRule(match, replacement.strip()))
    return tuple(rules)
