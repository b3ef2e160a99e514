from importlib import import_module

modules = [
    'users',
    'systems',
    'bulk_upload',
    'access_grants',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
