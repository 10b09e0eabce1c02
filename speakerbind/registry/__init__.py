"""
Speaker registry module boundary.

Design intent:
- Own the committed speaker list and its working draft.
- Keep validation rules pure so feedback and save share one rule set.
"""
