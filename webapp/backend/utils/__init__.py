"""
Shared utility functions for the backend.

Import from the submodules directly (utils.periods, utils.response_builders,
...); schemas and services depend on utils.periods, so this package must not
import them back.
"""
