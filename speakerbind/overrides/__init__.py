"""
Speaker override module boundary.

Design intent:
- Track segment-level corrections without renaming registry entries.
- Derive display names and confidence trust from registry + overrides.
"""
