"""
Consumers module: membership claiming, dashboard, payment history and profile.
"""
