"""
Permission management feature module.

Implements the authorization decision core: a static permission catalog,
per-user overrides with expiry, effective permission resolution, ownership
checks, and composable guards for route protection.
"""
