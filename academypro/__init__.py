"""
AcademyPro backend
Multi-tenant academy management over FastAPI, Postgres, MongoDB, Redis and S3.
"""
