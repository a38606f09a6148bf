"""
CareNote Backend — Services Package
=====================================

What:  Business logic, independent of HTTP concerns.

Service Inventory:
    pricing              pure pricing table + license/tier resolver
    tenancy_service      owner/member queries and workplace fan-out
    subscription_service subscription lifecycle and tier changes
    invitation_service   invite / accept / remove members (auto-upgrade)
    auth_service         registration, login, tokens, password reset
    email_service        SMTP dispatch (aiosmtplib + Jinja2)
    corti_service        Corti clinical AI client (retry + circuit breaker)
    session_service      clinical recording sessions and facts
    template_service     generated clinical notes
    lead_service         landing-page lead capture
    admin_service        super-admin console

Each module exposes a singleton instance; routes import the instance.
"""
