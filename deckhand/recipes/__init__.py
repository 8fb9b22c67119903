"""Task recipes shipped with Deckhand."""
from deckhand.core.tasks import TaskRegistry
from deckhand.recipes.cms import register_cms_tasks
from deckhand.recipes.common import register_common_tasks


def build_registry() -> TaskRegistry:
    """Construct the task registry with the deployment and CMS recipes."""
    registry = TaskRegistry()
    register_common_tasks(registry)
    register_cms_tasks(registry)
    registry.validate()
    return registry


__all__ = [
    'build_registry',
]
