"""
Payments module.

Gateway orders are opened per fee plan and reconciled on verify: the order status is
copied from the gateway, PAID orders mark the fee plan PAID, and the gateway's payment
attempts are stored as transactions (deduplicated on the gateway payment id).
"""
