"""
speakerbind package.

Design intent:
- Bind machine-generated speaker labels to human identities for one session.
- Keep every identity, override and audit record in memory only.
- Keep domain modules (registry/overrides) independent from the HTTP surface.
"""
