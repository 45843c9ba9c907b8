"""
Services Layer

Pure business logic services that:
- Accept domain inputs (IDs, sessions, entrants)
- Return domain outputs (models, dataclasses)
- Do NOT depend on HTTP request/response objects
- Raise BracketError subclasses for caller-facing validation failures
"""
