"""Re-declaration of host extensions as compile-only jars.

Extensions declared as plugin dependencies are compiled against but never
bundled: the host supplies them at runtime. The :class:`ScopeRewriter` resolves
a source role, keeps the host extension artifacts and re-adds each of them to a
target role as a non-transitive ``@jar`` dependency.

Rewrites are declared up front and run later, the first time the target role
is read, so that declarations made after the rule was registered are honoured.
"""

from __future__ import annotations

import concurrent.futures
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Set

from jpikit.core.logging_manager import get_logger
from jpikit.plugin_system.artifacts import (
    ArtifactKind,
    ModuleId,
    ResolvedArtifact,
    RewrittenDependency,
    classify,
)
from jpikit.plugin_system.roles import RoleGraph, RoleKey, RoleName
from jpikit.utils.exceptions import ConfigurationError

# (source, target) pairs rewritten in every plugin project.
DEFAULT_REWRITES = (
    (RoleName.PLUGINS, RoleName.PROVIDED_COMPILE),
    (RoleName.OPTIONAL_PLUGINS, RoleName.PROVIDED_COMPILE),
    (RoleName.TEST_PLUGINS, RoleName.TEST_IMPLEMENTATION),
)

SourceResolver = Callable[[str], Sequence[ResolvedArtifact]]


@dataclass(frozen=True)
class RewriteRule:
    """Intent to re-expose the host extensions of ``source`` on ``target``."""

    source: str
    target: str

    def __str__(self) -> str:
        return f"{self.source} -> {self.target}"


class ScopeRewriter:
    """Collects rewrite rules and applies them once per target role."""

    def __init__(self, graph: RoleGraph, max_workers: int = 4) -> None:
        self.graph = graph
        self.max_workers = max_workers
        self._logger = get_logger("scope_rewriter")
        self._rules: List[RewriteRule] = []
        self._applied: Set[RewriteRule] = set()
        self._rewritten: Dict[str, Dict[ModuleId, RewrittenDependency]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def rules(self) -> List[RewriteRule]:
        return list(self._rules)

    def rewrite(self, source: RoleKey, target: RoleKey) -> RewriteRule:
        """Register a deferred rewrite of ``source`` into ``target``.

        Registering the same pair twice returns the existing rule.

        Raises:
            ConfigurationError: If a role is unknown, the graph is frozen, or the
                rule would make the target feed back into its own source
        """
        rule = RewriteRule(self.graph.get(source).name, self.graph.get(target).name)
        if self.graph.frozen:
            raise ConfigurationError(
                f"Cannot register rewrite {rule}: the role graph is frozen",
                config_key=rule.target,
            )
        if rule in self._rules:
            return rule
        if rule.source == rule.target or self._reaches(rule.target, rule.source):
            raise ConfigurationError(
                f"Rewrite {rule} would make {rule.target} depend on itself",
                config_key=rule.target,
            )
        self._rules.append(rule)
        self._rewritten.setdefault(rule.target, {})
        return rule

    def _reaches(self, start: str, goal: str) -> bool:
        """Whether ``goal`` is reachable from ``start`` via extends edges or rules."""
        pending = [start]
        seen: Set[str] = set()
        while pending:
            node = pending.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            pending.extend(self.graph.targets_of(node))
            pending.extend(rule.target for rule in self._rules if rule.source == node)
        return False

    def rules_for(self, target: RoleKey) -> List[RewriteRule]:
        key = self.graph.get(target).name
        return [rule for rule in self._rules if rule.target == key]

    def pending_for(self, target: RoleKey) -> List[RewriteRule]:
        return [rule for rule in self.rules_for(target) if rule not in self._applied]

    def is_applied(self, rule: RewriteRule) -> bool:
        return rule in self._applied

    def rewritten(self, target: RoleKey) -> List[RewrittenDependency]:
        """Rewritten dependencies added to ``target`` so far, in insertion order."""
        key = self.graph.get(target).name
        with self._lock_for(key):
            return list(self._rewritten.get(key, {}).values())

    def _lock_for(self, target: str) -> threading.Lock:
        with self._locks_guard:
            if target not in self._locks:
                self._locks[target] = threading.Lock()
            return self._locks[target]

    def apply(self, target: RoleKey, resolve_source: SourceResolver) -> List[RewrittenDependency]:
        """Run every pending rule that targets ``target``.

        Source roles are resolved concurrently; results are merged in rule
        declaration order so the first source to contribute a module wins.
        Resolution errors propagate unchanged and leave the rules pending.

        Returns:
            The dependencies newly added to ``target``
        """
        key = self.graph.get(target).name
        with self._lock_for(key):
            pending = [rule for rule in self._rules if rule.target == key and rule not in self._applied]
            if not pending:
                return []

            resolved = self._resolve_sources([rule.source for rule in pending], resolve_source)
            added: List[RewrittenDependency] = []
            for rule in pending:
                added.extend(self._merge(rule, resolved[rule.source]))
                self._applied.add(rule)
            return added

    def apply_rule(
            self, source: RoleKey, target: RoleKey, resolve_source: SourceResolver
    ) -> List[RewrittenDependency]:
        """Run a single rule immediately, whether or not it already ran.

        Modules already present on the target are skipped, so running a rule
        again never duplicates entries.
        """
        rule = RewriteRule(self.graph.get(source).name, self.graph.get(target).name)
        with self._lock_for(rule.target):
            artifacts = resolve_source(rule.source)
            added = self._merge(rule, artifacts)
            if rule in self._rules:
                self._applied.add(rule)
            return added

    def _resolve_sources(
            self, sources: List[str], resolve_source: SourceResolver
    ) -> Dict[str, Sequence[ResolvedArtifact]]:
        unique = list(dict.fromkeys(sources))
        if len(unique) == 1 or self.max_workers <= 1:
            return {source: resolve_source(source) for source in unique}

        with concurrent.futures.ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(unique)),
                thread_name_prefix="jpikit-resolve",
        ) as pool:
            futures = {source: pool.submit(resolve_source, source) for source in unique}
            return {source: future.result() for source, future in futures.items()}

    def _merge(
            self, rule: RewriteRule, artifacts: Sequence[ResolvedArtifact]
    ) -> List[RewrittenDependency]:
        """Add the host extensions among ``artifacts``; caller holds the target lock."""
        existing = self._rewritten.setdefault(rule.target, {})
        added: List[RewrittenDependency] = []
        for artifact in artifacts:
            if classify(artifact) is not ArtifactKind.HOST_EXTENSION:
                continue
            if artifact.module_id in existing:
                continue
            rewritten = RewrittenDependency.from_artifact(artifact, rule.source, rule.target)
            existing[artifact.module_id] = rewritten
            added.append(rewritten)
            self._logger.debug(
                "Added compile-only plugin jar",
                coordinate=rewritten.to_dependency().coordinate,
                source_role=rule.source,
                target_role=rule.target,
            )
        return added
