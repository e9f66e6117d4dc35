"""
Companies app: the tenants that own every MoMo record.

Related apps:
    - momo: providers, transactions and reconciliations are company-owned
"""
