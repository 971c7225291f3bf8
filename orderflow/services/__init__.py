"""
Order pipeline services: inventory ledger, order numbering, order store,
placement, fulfillment, plus the payment and realtime integrations.
"""
