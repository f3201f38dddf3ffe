"""Runtime: gate interpretation, routing, observers and the runner.

Import from submodules (``stepflow.runtime.runner`` etc.); this package
stays import-light because the registry loader depends on its errors.
"""
