"""
Billing Domain

Plan catalog, publisher subscriptions, the MercadoPago client and webhook
reconciliation.
"""
