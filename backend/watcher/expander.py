"""
EtagWatch Dependency Expander.

Fans a set of changed paths out to the paths that depend on them.
Requires Python 3.11+.
"""

from collections.abc import Iterable

from utils.logger import LoggerMixin
from watcher.registry import PathRegistry


class DependencyExpander(LoggerMixin):
    """
    Single-hop expansion over the declared dependency relation.

    A path that depends on a dependent of a changed path is not
    included; only direct dependents are.
    """

    def expand(self, changed_paths: Iterable[str], registry: PathRegistry) -> list[str]:
        """
        Expand changed paths with their direct dependents.

        Args:
            changed_paths: Paths whose state changed
            registry: Registry holding the dependency declarations

        Returns:
            The changed paths followed by their dependents, without duplicates
        """
        changed = list(dict.fromkeys(changed_paths))
        if not changed:
            return []

        dependents = registry.dependents_of(changed)
        expanded = list(dict.fromkeys([*changed, *dependents]))

        if dependents:
            self.log.debug(
                "dependencies_expanded",
                changed=len(changed),
                dependents=len(expanded) - len(changed),
            )
        return expanded
