"""
A11y Document Remediation Backend - REST API for document accessibility audits

This package provides a FastAPI-based web service that sits between document
uploaders and an external WCAG auditor process. It enables:

- Direct and presigned uploads/downloads against an S3-compatible bucket
- Audit registration for uploaded documents
- Bulk submission of WCAG findings with an audit lifecycle
  (pending -> in-progress -> complete) and issue counters
- Retrieval of audits together with their findings

The service does not analyse documents itself; it only records the results
reported by the auditor.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - handlers: One translation function per API operation
    - database: SQLite audit repository and lifecycle rules
    - storage: Object store gateway (put/get/presigned URLs)
    - models: Pydantic models for request/response validation
    - configuration: Config loading from defaults, YAML and environment
    - errors: Error taxonomy and result values

Usage:
    Run the API server with:
        uvicorn a11y_remediation_backend.main:app --reload --host 0.0.0.0 --port 8000
"""
