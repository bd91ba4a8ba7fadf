"""Data model for routes, allocations and bundles.

Submodules are imported directly (``dexbundler.models.route`` etc.) so that
``dexbundler.constants`` can depend on ``dexbundler.models.types`` without an
import cycle.
"""
