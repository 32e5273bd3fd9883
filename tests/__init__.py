"""Test package marker.

What:
  Marks ``tests`` as a package so the shared ``conftest`` is imported once
  under a stable name.

Invariants & Safety:
  - The file must remain side-effect free so that importing ``tests`` never
    mutates environment state or test fixtures.
"""
