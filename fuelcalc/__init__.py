"""
Backend package for the fuel combustion calculation service.

This package provides a FastAPI application with storage, database and
token deny-list abstractions plus the asynchronous calculation orchestrator
that fans fuel jobs out to an external calculator.
"""
