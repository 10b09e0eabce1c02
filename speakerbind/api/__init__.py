"""
HTTP boundary for speakerbind workspaces.

Design intent:
- Expose thin, typed endpoints for registry, override and session flows.
- Keep request validation explicit and failure modes predictable.
- Delegate every rule to the workspace; routers hold no domain state.
"""
