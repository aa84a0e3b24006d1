from .models import ActorState, CheapestFirstPolicy, EngineConfig, ExecutionContext, Policy


def build_engine(*args, **kwargs):
    from .loaders import build_engine as _build_engine

    return _build_engine(*args, **kwargs)


def execute_activity(*args, **kwargs):
    from .activities import execute_activity as _execute_activity

    return _execute_activity(*args, **kwargs)


__all__ = [
    "build_engine",
    "execute_activity",
    "ActorState",
    "CheapestFirstPolicy",
    "EngineConfig",
    "ExecutionContext",
    "Policy",
]
