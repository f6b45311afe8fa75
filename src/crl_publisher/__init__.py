"""
crl-publisher — CRL ingestion and publication service.

Accepts CRL uploads (PEM or DER), authenticates them against stored CA
certificates, enforces CRL ordering, archives superseded versions and keeps
the response cache coherent with every accepted upload.
"""

__version__ = "0.1.0"
