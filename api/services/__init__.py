"""Service layer for business logic.

Services encapsulate the streak rules, keeping routes thin and focused
on HTTP handling.

Layer hierarchy:
    Routes (HTTP) -> Services (Business Logic) -> Repositories (Database)

Services should:
- Contain all business rules and validation
- Orchestrate calls to repositories through the store protocols
- Return Pydantic engine shapes (not ORM models)
- Not contain HTTP-specific logic (status codes, response formatting)
"""
