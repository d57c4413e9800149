"""
Budget Gateway - institution spending workflow over a remote ledger.

Institutions deposit funds on the ledger, associates raise spending requests
against that balance, and the institution's auditor reviews them. The ledger
is authoritative for balances and transaction facts; this service keeps the
operational metadata around them.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
