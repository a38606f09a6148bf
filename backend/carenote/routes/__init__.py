"""
CareNote Backend — API Routes Package
=======================================

Route Inventory:
    auth.py           /api/auth/...            registration, login, tokens, invitations
    subscriptions.py  /api/pricing, /api/subscription
    clinic.py         /api/clinic/...          members and invitations
    sessions.py       /api/sessions/...        recording sessions and facts (402-gated)
    templates.py      /api/templates/...       generated clinical notes (402-gated)
    leads.py          /api/leads               landing-page lead capture
    contact.py        /api/contact             public contact form
    admin.py          /api/admin/...           super-admin console
    health.py         /health

Routes stay thin: parse the request, call a service, shape the response.
"""
