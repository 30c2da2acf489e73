"""FastAPI dependencies for the trigger routes.

Routes receive a RunDispatcher for the pipeline kind in the path. Tests
swap in their own dispatcher with app.dependency_overrides.
"""

from functools import lru_cache

from catalog_pipeline.core.enums import PipelineKind
from catalog_pipeline.pipeline.dispatcher import RunDispatcher
from catalog_pipeline.pipeline.factory import get_pipeline


@lru_cache(maxsize=None)
def _dispatcher_for(kind: PipelineKind) -> RunDispatcher:
    return RunDispatcher(get_pipeline(kind))


def get_dispatcher(kind: PipelineKind) -> RunDispatcher:
    """Dependency returning the (process-wide) dispatcher for a kind.

    Args:
        kind: Pipeline kind taken from the route path.

    Returns:
        RunDispatcher instance.
    """
    return _dispatcher_for(kind)
