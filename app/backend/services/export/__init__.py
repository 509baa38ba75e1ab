"""Off-site export of restic snapshots.

This package provides:
- Streaming AES-256-CTR + HMAC-SHA256 encryption of archives
- tar.gz archiving and extraction of restored snapshot trees
- A bounded producer/consumer pipeline from restic restore to object storage
"""
