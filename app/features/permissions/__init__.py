"""
Access control feature module.

Role-based permissions within an organization and plan-based module gating,
with a cached role resolver and a guard that maps both onto render/HTTP
outcomes.
"""
