"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its routes and handlers,
while reusing platform primitives (auth, RBAC, audit, DB session, mailer).
"""
