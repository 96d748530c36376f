from importlib import import_module

modules = [
    'auth',
    'users',
    'projects',
    'milestones',
    'records',
    'knowledge',
    'archive',
    'audit',
    'notifications',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
