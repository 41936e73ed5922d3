"""
Kepka platform API.

FastAPI service for token management: accounts, token and transaction
records, gasless sponsorship bookkeeping, subscription billing and
administrative reporting on top of a relational database and a payment
gateway.
"""
