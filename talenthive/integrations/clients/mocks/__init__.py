"""
Mock integration clients.

These clients return fake (but realistic) responses without calling the
card processor. They are used when:
- no STRIPE_SECRET_KEY is configured
- we want to test payment flows end-to-end without network access

Important:
- Mock clients must follow the SAME interface as real HTTP clients.
- Mock clients return data shaped according to talenthive/integrations/contracts/*

Switching to real:
Set STRIPE_SECRET_KEY (or INTEGRATIONS_MODE=real); talenthive/api/main.py
then wires clients/real_http/* instead.
"""
