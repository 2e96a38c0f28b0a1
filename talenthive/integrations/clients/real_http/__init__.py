"""
Real integration clients.

These clients talk to the live card processor (Stripe).

Important:
- Must implement the same interfaces as the mock clients
- Must return data shaped according to talenthive/integrations/contracts/*

Switching:
The selection of mock vs real clients happens in talenthive/api/main.py only.
"""
