"""Read-only OCI image registry served from S3-compatible storage, with a pusher for OCI layouts."""

__version__ = "2.1.2"