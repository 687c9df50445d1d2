"""
Providers module.

Scope:
- Public provider lookup (by code, category search)
- Provider dashboard (cached per provider)
- KYC submission (individual / organization) with document uploads
- Wallet bank accounts, verified synchronously with the gateway's bank verification API
"""
